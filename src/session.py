"""Per-session conversation state and the store that holds it.

The store is an interface (``get`` / ``put`` / ``expire`` plus a
single-flight ``lock``) so a durable backend can replace the in-memory
one without touching the orchestration loop.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from langchain_core.messages import AnyMessage

from src.errors import SessionBusyError
from src.models import AccountRef, ConflictProposal, ProposalKind

logger = logging.getLogger(__name__)


@dataclass
class ConversationState:
    session_id: str
    history: list[AnyMessage] = field(default_factory=list)
    pending_conflict: ConflictProposal | None = None
    accounts: list[AccountRef] = field(default_factory=list)
    turns: int = 0
    updated_at: float = field(default_factory=time.monotonic)

    @property
    def primary_account(self) -> AccountRef | None:
        for account in self.accounts:
            if account.primary:
                return account
        return self.accounts[0] if self.accounts else None

    def account(self, account_id: str | None) -> AccountRef | None:
        """Look up an account by id, falling back to the primary one."""
        if not account_id:
            return self.primary_account
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def pending(self, kind: ProposalKind | None = None) -> ConflictProposal | None:
        proposal = self.pending_conflict
        if proposal is None or (kind is not None and proposal.kind != kind):
            return None
        return proposal

    def clear_conflict(self) -> None:
        self.pending_conflict = None


class SessionStore(ABC):
    """Where conversation state lives between turns."""

    @abstractmethod
    def get(self, session_id: str) -> ConversationState | None:
        ...

    @abstractmethod
    def put(self, state: ConversationState) -> None:
        ...

    @abstractmethod
    def expire(self, session_id: str) -> bool:
        """Drop a session.  Returns ``True`` if it existed."""

    @abstractmethod
    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        """Hold the session for the duration of one turn."""

    def load_or_create(self, session_id: str, accounts: list[AccountRef] | None = None) -> ConversationState:
        state = self.get(session_id)
        if state is None:
            state = ConversationState(session_id=session_id)
            logger.info("Created session %s", session_id)
        if accounts:
            state.accounts = list(accounts)
        return state


class InMemorySessionStore(SessionStore):
    """Volatile store: sessions vanish with the process.

    ``ttl_seconds`` of 0 keeps sessions forever; otherwise idle sessions are
    dropped lazily on access.  ``lock`` queues a second turn for the same
    session for up to ``lock_timeout`` seconds, then rejects it.
    """

    def __init__(self, ttl_seconds: float = 0, lock_timeout: float = 30.0) -> None:
        self._ttl = ttl_seconds
        self._lock_timeout = lock_timeout
        self._sessions: dict[str, ConversationState] = {}
        self._turn_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _is_stale(self, state: ConversationState) -> bool:
        return self._ttl > 0 and time.monotonic() - state.updated_at > self._ttl

    def get(self, session_id: str) -> ConversationState | None:
        with self._guard:
            state = self._sessions.get(session_id)
            if state is not None and self._is_stale(state):
                logger.info("Session %s expired after %ss idle", session_id, self._ttl)
                del self._sessions[session_id]
                return None
            return state

    def put(self, state: ConversationState) -> None:
        state.updated_at = time.monotonic()
        with self._guard:
            self._sessions[state.session_id] = state

    def expire(self, session_id: str) -> bool:
        with self._guard:
            self._turn_locks.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        with self._guard:
            turn_lock = self._turn_locks.setdefault(session_id, threading.Lock())
        if not turn_lock.acquire(timeout=self._lock_timeout):
            raise SessionBusyError(f"Session {session_id} is busy with another message")
        try:
            yield
        finally:
            turn_lock.release()

    def __len__(self) -> int:
        return len(self._sessions)
