"""Narrow interfaces to every external system the assistant talks to.

Concrete adapters live in ``src/services/``; tests use in-memory fakes.
Any method may raise :class:`~src.errors.PortTransportError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from langchain_core.messages import AnyMessage

from src.models import (
    AccountRef,
    AssistantTurn,
    BusyWindow,
    CalendarEvent,
    CallStatus,
    EventDraft,
    EventPatch,
)


class CalendarPort(ABC):
    @abstractmethod
    def list_events(self, account: AccountRef, start: datetime, end: datetime) -> list[CalendarEvent]:
        """Return events on *account* that intersect ``[start, end)``."""

    @abstractmethod
    def create_event(self, account: AccountRef, draft: EventDraft) -> CalendarEvent:
        ...

    @abstractmethod
    def update_event(self, account: AccountRef, event_id: str, patch: EventPatch) -> CalendarEvent:
        ...

    @abstractmethod
    def delete_event(self, account: AccountRef, event_id: str) -> None:
        ...

    @abstractmethod
    def get_free_busy(
        self, accounts: list[AccountRef], start: datetime, end: datetime,
    ) -> dict[str, list[BusyWindow]]:
        """Return busy windows keyed by account id."""


class ContactsPort(ABC):
    @abstractmethod
    def find_email_by_name(self, account: AccountRef, name: str) -> str | None:
        ...


class MailPort(ABC):
    @abstractmethod
    def send(self, account: AccountRef, to: str, subject: str, body: str) -> str:
        """Send a message and return the provider's message id."""


class VoiceCallPort(ABC):
    @abstractmethod
    def place_call(self, target: str, script: str) -> str:
        """Start an outbound call to *target* (E.164) and return its id."""

    @abstractmethod
    def poll_status(self, call_id: str) -> CallStatus:
        ...


class WebSearchPort(ABC):
    @abstractmethod
    def search(self, query: str, max_results: int = 5) -> dict[str, Any]:
        ...

    @abstractmethod
    def fetch(self, url: str, max_chars: int = 12_000) -> dict[str, Any]:
        ...


class CompletionPort(ABC):
    @abstractmethod
    def complete(self, messages: list[AnyMessage], tool_catalog: list[dict[str, Any]]) -> AssistantTurn:
        """Return either a final answer or one or more tool calls."""
