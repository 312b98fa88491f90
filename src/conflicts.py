"""Conflict detection and the propose → validate → commit reschedule flow.

Each :class:`~src.models.ConflictProposal` moves through::

    PROPOSED ──(user picks)──▶ VALIDATING ──▶ COMMITTED
                                   │
                                   └──(slot taken)──▶ REJECTED

Alternatives are only offered if they are free on *every* linked account,
and the chosen one is checked again right before anything is written.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, tzinfo

from src.errors import ConflictRevalidationFailure, PortTransportError
from src.models import (
    AccountRef,
    BookingAttempt,
    BusyWindow,
    CalendarEvent,
    Conflict,
    ConflictProposal,
    EventDraft,
    EventPatch,
    ProposalKind,
    ProposalState,
    SlotOption,
)
from src.parsing import parse_selection
from src.ports import CalendarPort
from src.slots import elapsed, generate_alternatives, is_available, overlaps, shift

logger = logging.getLogger(__name__)


class ConflictEngine:
    def __init__(self, calendar: CalendarPort, tz: tzinfo) -> None:
        self._calendar = calendar
        self._tz = tz

    @property
    def tz(self) -> tzinfo:
        return self._tz

    # ── Detection ────────────────────────────────────────────────────

    def find_conflicts(
        self,
        accounts: Sequence[AccountRef],
        start: datetime,
        end: datetime,
        *,
        ignore_event_id: str | None = None,
    ) -> list[Conflict]:
        """Return the real events, per account, that overlap ``[start, end)``."""
        conflicts = []
        for account in accounts:
            for event in self._calendar.list_events(account, start, end):
                if ignore_event_id and event.id == ignore_event_id:
                    continue
                if overlaps(start, end, event.start, event.end):
                    conflicts.append(Conflict(account=account, event=event))
        if conflicts:
            logger.debug(
                "Window %s-%s conflicts with %d event(s)", start.isoformat(), end.isoformat(), len(conflicts),
            )
        return conflicts

    def is_window_free(
        self,
        accounts: Sequence[AccountRef],
        start: datetime,
        end: datetime,
        *,
        ignore_event_id: str | None = None,
    ) -> bool:
        """Check one window across all accounts.

        Free/busy is enough unless an event must be ignored (the one being
        moved), in which case the events themselves are needed.
        """
        if ignore_event_id:
            return not self.find_conflicts(accounts, start, end, ignore_event_id=ignore_event_id)
        busy_by_account = self._calendar.get_free_busy(list(accounts), start, end)
        busy = [window for windows in busy_by_account.values() for window in windows]
        return is_available(BusyWindow(start, end), busy)

    # ── PROPOSED ─────────────────────────────────────────────────────

    def propose(
        self,
        kind: ProposalKind,
        subject: CalendarEvent,
        accounts: Sequence[AccountRef],
        *,
        conflicts: Sequence[Conflict] = (),
        turn: int = 0,
        booking: BookingAttempt | None = None,
        anchor: datetime | None = None,
    ) -> ConflictProposal:
        """Build a proposal whose alternatives are all verified free now.

        Alternatives are laid out around *anchor* (default: the subject's own
        start) and keep the subject's duration.
        """
        ignore = subject.id if kind == ProposalKind.RESCHEDULE else None
        start = anchor or subject.start
        candidates = generate_alternatives(start, shift(start, elapsed(subject.start, subject.end)), self._tz)
        free = [
            option for option in candidates
            if self.is_window_free(accounts, option.start, option.end, ignore_event_id=ignore)
        ]
        logger.info(
            "Proposed %d/%d free alternative(s) for %s '%s'",
            len(free), len(candidates), kind.value, subject.summary,
        )
        return ConflictProposal(
            kind=kind,
            subject=subject,
            alternatives=free,
            conflicts=list(conflicts),
            turn=turn,
            booking=booking,
            anchor=anchor,
        )

    def select(self, proposal: ConflictProposal, reply: str) -> SlotOption | None:
        """Resolve "second" / "3rd" / "4pm" / "16:00" to one of the options.

        Returns ``None`` (proposal stays PROPOSED) when nothing matches.
        """
        selection = parse_selection(reply)
        if selection is None:
            return None
        if selection.index is not None:
            if 0 <= selection.index < len(proposal.alternatives):
                return proposal.alternatives[selection.index]
            return None
        for option in proposal.alternatives:
            if selection.time.matches(option.start.astimezone(self._tz)):
                return option
        return None

    # ── VALIDATING → COMMITTED | REJECTED ────────────────────────────

    def validate(self, proposal: ConflictProposal, option: SlotOption, accounts: Sequence[AccountRef]) -> None:
        """Re-check exactly *option* against the calendars as they are now."""
        proposal.state = ProposalState.VALIDATING
        ignore = proposal.subject.id if proposal.kind == ProposalKind.RESCHEDULE else None
        try:
            free = self.is_window_free(accounts, option.start, option.end, ignore_event_id=ignore)
        except PortTransportError:
            proposal.state = ProposalState.PROPOSED
            raise
        if not free:
            proposal.state = ProposalState.REJECTED
            logger.info("Slot %s was taken after it was proposed", option.display)
            raise ConflictRevalidationFailure(
                f"Sorry, {option.display} is no longer available. Please choose a different time."
            )

    def commit(
        self,
        proposal: ConflictProposal,
        option: SlotOption,
        accounts: Sequence[AccountRef],
    ) -> CalendarEvent:
        """Validate *option* and write it.  Booking proposals go through the
        booking flow instead, since they need a phone call first."""
        if proposal.kind == ProposalKind.BOOKING:
            raise ValueError("Booking proposals are committed by the booking flow")

        self.validate(proposal, option, accounts)
        account = _account_for(accounts, proposal.subject.account_id)
        subject = proposal.subject
        try:
            if proposal.kind == ProposalKind.RESCHEDULE:
                event = self._calendar.update_event(
                    account, subject.id, EventPatch(start=option.start, end=option.end),
                )
            else:
                event = self._calendar.create_event(
                    account,
                    EventDraft(
                        summary=subject.summary,
                        start=option.start,
                        end=option.end,
                        attendees=list(subject.attendees),
                        description=subject.description,
                    ),
                )
        except PortTransportError:
            proposal.state = ProposalState.PROPOSED
            raise
        proposal.state = ProposalState.COMMITTED
        logger.info("Committed %s '%s' at %s", proposal.kind.value, subject.summary, option.display)
        return event

    def regenerate(self, proposal: ConflictProposal, accounts: Sequence[AccountRef], *, turn: int = 0) -> ConflictProposal:
        """Fresh alternatives around the same subject after a REJECTED commit."""
        return self.propose(
            proposal.kind,
            proposal.subject,
            accounts,
            conflicts=proposal.conflicts,
            turn=turn,
            booking=proposal.booking,
            anchor=proposal.anchor,
        )


def _account_for(accounts: Sequence[AccountRef], account_id: str | None) -> AccountRef:
    for account in accounts:
        if account.id == account_id:
            return account
    if not accounts:
        raise ValueError("No calendar account is linked to this session")
    return next((a for a in accounts if a.primary), accounts[0])


def describe_alternatives(alternatives: Sequence[SlotOption]) -> str:
    return "".join(f"\n{i}. {option.label}: {option.display}" for i, option in enumerate(alternatives, start=1))
