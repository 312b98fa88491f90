"""Domain types shared by the ports, the tools and the orchestration loop.

All datetimes are timezone-aware; comparisons are done on instants.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

from langchain_core.messages import AIMessage


@dataclass(frozen=True)
class AccountRef:
    """A linked calendar account (personal, work...)."""

    id: str
    title: str
    credential_handle: str
    primary: bool = False


@dataclass
class CalendarEvent:
    id: str | None
    account_id: str
    summary: str
    start: datetime
    end: datetime
    attendees: list[str] = field(default_factory=list)
    description: str | None = None
    calendar_email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "calendar_email": self.calendar_email,
            "summary": self.summary,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "attendees": list(self.attendees),
        }


@dataclass
class EventDraft:
    summary: str
    start: datetime
    end: datetime
    attendees: list[str] = field(default_factory=list)
    description: str | None = None


@dataclass
class EventPatch:
    summary: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    attendees: list[str] | None = None


@dataclass(frozen=True)
class BusyWindow:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class SlotOption:
    """A candidate replacement window offered to the user."""

    label: str
    start: datetime
    end: datetime
    display: str

    def to_dict(self) -> dict[str, str]:
        return {
            "label": self.label,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "display": self.display,
        }


@dataclass(frozen=True)
class Conflict:
    """An existing event, on a specific account, that blocks a window."""

    account: AccountRef
    event: CalendarEvent

    def to_dict(self) -> dict[str, Any]:
        return {"account_id": self.account.id, "account_title": self.account.title, **self.event.to_dict()}


class ProposalState(str, Enum):
    PROPOSED = "proposed"
    VALIDATING = "validating"
    COMMITTED = "committed"
    REJECTED = "rejected"


class ProposalKind(str, Enum):
    CREATE = "create"
    RESCHEDULE = "reschedule"
    BOOKING = "booking"


@dataclass
class BookingAttempt:
    """One appointment booking made over the phone.

    ``requested_*`` is what the user asked for; ``confirmed_*`` is what the
    business agreed to on the call.  Only ``confirmed_*`` is ever written to
    the calendar or stated back to the user.
    """

    service: str
    requested_date: date
    requested_start: datetime
    requested_end: datetime
    phone: str | None = None
    confirmed_start: datetime | None = None
    confirmed_end: datetime | None = None
    call_id: str | None = None
    transcript: str = ""

    @property
    def duration(self) -> timedelta:
        return self.requested_end.astimezone(timezone.utc) - self.requested_start.astimezone(timezone.utc)


@dataclass
class ConflictProposal:
    kind: ProposalKind
    subject: CalendarEvent
    alternatives: list[SlotOption]
    conflicts: list[Conflict] = field(default_factory=list)
    state: ProposalState = ProposalState.PROPOSED
    turn: int = 0
    booking: BookingAttempt | None = None
    # Where the alternatives were laid out, if not at subject.start
    anchor: datetime | None = None


class CallState(str, Enum):
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    ENDED = "ended"


@dataclass
class CallStatus:
    status: str
    transcript: str = ""
    summary: str = ""
    ended_reason: str | None = None


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class AssistantTurn:
    """What the completion port returned: final text or tool calls."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return not self.tool_calls

    def to_message(self) -> AIMessage:
        return AIMessage(
            content=self.text,
            tool_calls=[
                {"id": call.id, "name": call.name, "args": call.arguments}
                for call in self.tool_calls
            ],
        )


@dataclass
class ProgressEvent:
    type: str  # progress | error | response | complete
    content: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "content": self.content}
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass
class TurnResult:
    """Outcome of one inbound user message."""

    content: str
    status: str = "final"  # final | aborted
    alternatives: list[SlotOption] | None = None
    conflict: bool = False
