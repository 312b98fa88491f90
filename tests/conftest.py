"""Shared test fixtures: in-memory fakes for every port."""

from __future__ import annotations

import itertools
import os
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("DEFAULT_TIMEZONE", "America/Vancouver")
    os.environ["METRICS_ENABLED"] = "false"


TZ = ZoneInfo("America/Vancouver")


# ── Fakes ────────────────────────────────────────────────────────────
# Imports are local so pytest_configure has run before src.config loads.


def _fakes():
    from src.errors import PortTransportError
    from src.models import AssistantTurn, BusyWindow, CalendarEvent, CallStatus
    from src.ports import CalendarPort, CompletionPort, ContactsPort, MailPort, VoiceCallPort, WebSearchPort
    from src.slots import overlaps

    class FakeCalendar(CalendarPort):
        def __init__(self):
            self.events: dict[str, list[CalendarEvent]] = {}
            self.writes: list[tuple[str, object]] = []
            self.fail_with: Exception | None = None
            self._ids = itertools.count(1)

        def add(self, account_id, summary, start, end, event_id=None) -> CalendarEvent:
            event = CalendarEvent(
                id=event_id or f"evt-{next(self._ids)}", account_id=account_id,
                summary=summary, start=start, end=end,
            )
            self.events.setdefault(account_id, []).append(event)
            return event

        def _check(self):
            if self.fail_with is not None:
                raise self.fail_with

        def _find(self, account, event_id):
            for event in self.events.get(account.id, []):
                if event.id == event_id:
                    return event
            raise PortTransportError(f"Event {event_id} not found", service="fake", status_code=404)

        def list_events(self, account, start, end):
            self._check()
            return [e for e in self.events.get(account.id, []) if overlaps(start, end, e.start, e.end)]

        def create_event(self, account, draft):
            self._check()
            event = self.add(account.id, draft.summary, draft.start, draft.end)
            event.attendees = list(draft.attendees)
            event.description = draft.description
            self.writes.append(("create", event))
            return event

        def update_event(self, account, event_id, patch):
            self._check()
            event = self._find(account, event_id)
            for name in ("summary", "start", "end", "attendees"):
                value = getattr(patch, name)
                if value is not None:
                    setattr(event, name, value)
            self.writes.append(("update", event))
            return event

        def delete_event(self, account, event_id):
            self._check()
            event = self._find(account, event_id)
            self.events[account.id].remove(event)
            self.writes.append(("delete", event_id))

        def get_free_busy(self, accounts, start, end):
            self._check()
            return {
                a.id: [BusyWindow(e.start, e.end) for e in self.list_events(a, start, end)]
                for a in accounts
            }

    class FakeContacts(ContactsPort):
        def __init__(self, book=None):
            self.book = {k.lower(): v for k, v in (book or {}).items()}
            self.lookups: list[str] = []

        def find_email_by_name(self, account, name):
            self.lookups.append(name)
            return self.book.get(name.lower())

    class FakeMail(MailPort):
        def __init__(self):
            self.sent: list[tuple[str, str, str, str]] = []

        def send(self, account, to, subject, body):
            self.sent.append((account.id, to, subject, body))
            return f"msg-{len(self.sent)}"

    class FakeVoice(VoiceCallPort):
        def __init__(self):
            self.calls: list[tuple[str, str]] = []
            self.statuses: list[CallStatus] = [CallStatus("ended", "", "", "no-answer")]

        def finish(self, transcript: str, ended_reason: str = "assistant-ended-call", summary: str = ""):
            self.statuses = [
                CallStatus("ringing"),
                CallStatus("in-progress"),
                CallStatus("ended", transcript, summary, ended_reason),
            ]

        def place_call(self, target, script):
            self.calls.append((target, script))
            return f"call-{len(self.calls)}"

        def poll_status(self, call_id):
            if len(self.statuses) > 1:
                return self.statuses.pop(0)
            return self.statuses[0]

    class FakeWeb(WebSearchPort):
        def __init__(self):
            self.queries: list[str] = []

        def search(self, query, max_results=5):
            self.queries.append(query)
            return {"success": True, "answer": "An answer", "results": [{"url": "https://example.com", "title": "Ex"}]}

        def fetch(self, url, max_chars=12_000):
            return {"success": True, "url": url, "content": "Page text", "untrusted": True}

    class ScriptedCompletion(CompletionPort):
        """Replays scripted turns in order, repeating the last one."""

        def __init__(self, *turns: AssistantTurn):
            self.turns = list(turns)
            self.calls: list[list] = []
            self.error: Exception | None = None

        def complete(self, messages, tool_catalog):
            self.calls.append(list(messages))
            if self.error is not None:
                raise self.error
            if len(self.turns) > 1:
                return self.turns.pop(0)
            return self.turns[0] if self.turns else AssistantTurn(text="OK.")

    return SimpleNamespace(
        Calendar=FakeCalendar,
        Contacts=FakeContacts,
        Mail=FakeMail,
        Voice=FakeVoice,
        Web=FakeWeb,
        Completion=ScriptedCompletion,
    )


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def fakes():
    return _fakes()


@pytest.fixture
def accounts():
    from src.models import AccountRef

    return [
        AccountRef(id="personal", title="Personal", credential_handle="tok-personal", primary=True),
        AccountRef(id="work", title="Work", credential_handle="tok-work"),
    ]


@pytest.fixture
def calendar(fakes):
    return fakes.Calendar()


@pytest.fixture
def contacts(fakes):
    return fakes.Contacts({"Sarah": "sarah@example.com"})


@pytest.fixture
def mail(fakes):
    return fakes.Mail()


@pytest.fixture
def voice(fakes):
    return fakes.Voice()


@pytest.fixture
def web(fakes):
    return fakes.Web()


@pytest.fixture
def completion(fakes):
    return fakes.Completion()


@pytest.fixture
def services(fakes, calendar, contacts, mail, voice, web, completion):
    from src.models import AssistantTurn
    from src.services.factory import Services

    return Services(
        calendar=calendar,
        contacts=contacts,
        mail=mail,
        completion=completion,
        voice=voice,
        web=web,
        planner=fakes.Completion(AssistantTurn(text="none: answer directly")),
    )


@pytest.fixture
def engine(calendar):
    from src.conflicts import ConflictEngine

    return ConflictEngine(calendar, TZ)


@pytest.fixture
def booking(calendar, voice, engine):
    from src.booking import BookingFlow

    return BookingFlow(calendar, voice, engine, TZ, default_phone=None, poll_interval=0, max_polls=5)


@pytest.fixture
def session(accounts):
    from src.session import ConversationState

    return ConversationState(session_id="s-1", accounts=list(accounts), turns=1)


@pytest.fixture
def context(session, services, engine, booking):
    from src.tools.registry import ToolContext

    return ToolContext(session, services, engine, booking, TZ)


@pytest.fixture
def events():
    return []


@pytest.fixture
def progress(events):
    from src.progress import ProgressSink

    return ProgressSink(events.append)
