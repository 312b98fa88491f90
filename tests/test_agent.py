"""Tests for the orchestration loop: routing, guards, caps and session handling."""

import json
import threading
from datetime import datetime
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from src.agent import (
    ALL_TOOLS,
    MAX_REASON_CYCLES,
    AgentState,
    CalendarAgent,
    _best_partial,
    _close_dangling_tool_calls,
)
from src.errors import PortTransportError, SessionBusyError
from src.models import AssistantTurn, ToolCall
from src.prompts import CANCELLED_REPLY, FALLBACK_REPLY, MODEL_ERROR_REPLY, UNVERIFIED_SUCCESS_NOTE
from src.session import InMemorySessionStore

TZ = ZoneInfo("America/Vancouver")
SESSION = "sess-1"


def _at(hour: int, minute: int = 0, day: int = 21) -> datetime:
    return datetime(2026, 10, day, hour, minute, tzinfo=TZ)


def _call(name: str, call_id: str = "tc-1", **arguments) -> AssistantTurn:
    return AssistantTurn(tool_calls=[ToolCall(call_id, name, arguments)])


def _say(text: str) -> AssistantTurn:
    return AssistantTurn(text=text)


def _tool_results(messages) -> list[dict]:
    return [json.loads(m.content) for m in messages if isinstance(m, ToolMessage)]


@pytest.fixture
def store():
    return InMemorySessionStore(lock_timeout=0.05)


@pytest.fixture
def agent(services, store):
    return CalendarAgent(services, store, timezone="America/Vancouver")


@pytest.fixture
def ask(agent, accounts):
    def _ask(message: str, **kwargs):
        return agent.run_turn(message, SESSION, accounts, **kwargs)

    return _ask


# ── Graph structure ──────────────────────────────────────────────────


class TestAgentSetup:
    def test_graph_nodes(self, agent):
        nodes = set(agent.graph.get_graph().nodes)
        assert {"plan", "reason", "tools", "guard"} <= nodes

    def test_every_tool_registered(self, agent):
        assert len(agent.registry) == len(ALL_TOOLS)
        assert agent.registry.missing() == set()

    def test_state_schema_keys(self):
        assert set(AgentState.__annotations__) == {"messages", "plan", "cycles", "succeeded", "final"}


# ── Plain answers ────────────────────────────────────────────────────


class TestAnswers:
    def test_direct_answer(self, ask, completion):
        completion.turns = [_say("You're free all afternoon.")]
        result = ask("Am I free this afternoon?")
        assert result.content == "You're free all afternoon."
        assert result.status == "final"
        assert result.alternatives is None

    def test_plan_is_added_to_system_prompt(self, ask, completion, services):
        services.planner.turns = [_say("1. get_events for today")]
        completion.turns = [_say("Nothing today.")]
        ask("What's on today?")
        system = completion.calls[0][0]
        assert isinstance(system, SystemMessage)
        assert "1. get_events for today" in system.content

    def test_planner_failure_is_ignored(self, ask, completion, services):
        services.planner.error = RuntimeError("planner overloaded")
        completion.turns = [_say("Nothing today.")]
        assert ask("What's on today?").content == "Nothing today."

    def test_tool_result_fed_back_to_model(self, ask, completion, calendar):
        calendar.add("personal", "Dentist", _at(9), _at(10))
        completion.turns = [
            _call("get_events", time_min="2026-10-21T00:00:00", time_max="2026-10-21T23:59:00"),
            _say("You have a dentist appointment at 9."),
        ]
        result = ask("What's on Wednesday?")
        assert result.content == "You have a dentist appointment at 9."
        results = _tool_results(completion.calls[1])
        assert results[0]["events"][0]["summary"] == "Dentist"

    def test_history_carries_across_turns(self, ask, agent, completion):
        completion.turns = [_say("Hi!"), _say("Still here.")]
        ask("Hello")
        ask("Are you there?")
        history = agent.conversation(SESSION).history
        assert [type(m) for m in history] == [HumanMessage, AIMessage, HumanMessage, AIMessage]
        second_call = completion.calls[1]
        assert any(isinstance(m, HumanMessage) and m.content == "Hello" for m in second_call)
        assert agent.conversation(SESSION).turns == 2


# ── Confirmation gate ────────────────────────────────────────────────


class TestConfirmationGate:
    def test_bare_yes_does_not_delete(self, ask, completion, calendar):
        event = calendar.add("personal", "Dentist", _at(9), _at(10))
        completion.turns = [
            _call("delete_event", event_id=event.id),
            _say("Which event would you like me to delete?"),
        ]
        result = ask("yes")

        assert calendar.writes == []
        assert result.content == "Which event would you like me to delete?"
        skipped = _tool_results(completion.calls[1])[0]
        assert skipped["skipped"] is True

    def test_explicit_request_deletes(self, ask, completion, calendar):
        event = calendar.add("personal", "Dentist", _at(9), _at(10))
        completion.turns = [
            _call("delete_event", event_id=event.id),
            _say("Done, the dentist appointment has been deleted."),
        ]
        result = ask("Please delete my dentist appointment on Wednesday")
        assert calendar.writes == [("delete", event.id)]
        assert result.content == "Done, the dentist appointment has been deleted."

    def test_pick_from_offered_alternatives(self, ask, completion, calendar):
        calendar.add("work", "Board meeting", _at(15), _at(16))
        completion.turns = [
            _call("create_event", summary="Sync", start="2026-10-21T15:00:00", end="2026-10-21T16:00:00"),
            _say("That clashes with your board meeting. Which alternative would you like?"),
        ]
        first = ask("Create 'Sync' on Wednesday at 3pm")
        assert first.conflict is True
        assert [o.start for o in first.alternatives] == [_at(14), _at(16), _at(17)]
        assert calendar.writes == []

        completion.turns = [
            _call("select_alternative", "tc-2", selection="second"),
            _say("Done! Sync has been created at 4 PM."),
        ]
        second = ask("the second one")
        assert [kind for kind, _ in calendar.writes] == ["create"]
        assert calendar.writes[0][1].start == _at(16)
        assert second.content == "Done! Sync has been created at 4 PM."
        assert second.alternatives is None
        assert second.conflict is False


# ── Reply guard ──────────────────────────────────────────────────────


class TestGuard:
    def test_unverified_success_claim_is_sent_back(self, ask, completion, calendar):
        completion.turns = [
            _say("Your meeting has been rescheduled to 4 PM."),
            _say("I haven't changed anything yet. Should I move it to 4 PM?"),
        ]
        result = ask("Move my 3pm meeting")

        assert result.content == "I haven't changed anything yet. Should I move it to 4 PM?"
        assert len(completion.calls) == 2
        retry = completion.calls[1]
        assert isinstance(retry[-1], SystemMessage)
        assert retry[-1].content == UNVERIFIED_SUCCESS_NOTE

    def test_success_claim_after_successful_write_is_accepted(self, ask, completion, calendar):
        completion.turns = [
            _call("create_event", summary="Lunch", start="2026-10-21T12:00:00", end="2026-10-21T13:00:00"),
            _say("Done! Lunch has been created for 12 PM."),
        ]
        result = ask("Add lunch at noon on Wednesday")
        assert result.content == "Done! Lunch has been created for 12 PM."
        assert len(completion.calls) == 2

    def test_progress_only_reply_is_sent_back(self, ask, completion):
        completion.turns = [_say("Let me check your calendar..."), _say("You're free.")]
        assert ask("Am I free?").content == "You're free."
        assert len(completion.calls) == 2


# ── Aborted turns ────────────────────────────────────────────────────


class TestAbortedTurns:
    def test_iteration_cap(self, ask, completion, agent):
        completion.turns = [
            _call("get_events", time_min="2026-10-21T00:00:00", time_max="2026-10-21T23:59:00"),
        ]
        result = ask("What's on Wednesday?")

        assert len(completion.calls) == MAX_REASON_CYCLES
        assert result.status == "aborted"
        assert result.content == FALLBACK_REPLY
        history = agent.conversation(SESSION).history
        assert isinstance(history[-1], AIMessage)
        assert history[-1].content == FALLBACK_REPLY

    def test_iteration_cap_returns_best_partial(self, ask, completion):
        completion.turns = [
            AssistantTurn(
                text="You have two meetings on Wednesday so far.",
                tool_calls=[ToolCall("tc-1", "get_events", {
                    "time_min": "2026-10-21T00:00:00", "time_max": "2026-10-21T23:59:00",
                })],
            ),
        ]
        result = ask("What's on Wednesday?")
        assert result.status == "aborted"
        assert result.content == "You have two meetings on Wednesday so far."

    def test_model_error(self, ask, completion, events, progress):
        completion.error = PortTransportError("anthropic 529", service="anthropic", status_code=529)
        result = ask("Hello", progress=progress)
        assert result.status == "aborted"
        assert result.content == MODEL_ERROR_REPLY
        assert [e.type for e in events] == ["error"]

    def test_cancelled_turn(self, ask, completion):
        cancel = threading.Event()
        cancel.set()
        result = ask("Hello", cancel=cancel)
        assert result.status == "aborted"
        assert result.content == CANCELLED_REPLY
        assert completion.calls == []


class TestHistoryHelpers:
    def test_close_dangling_tool_calls(self):
        messages = [
            HumanMessage(content="hi"),
            AIMessage(content="", tool_calls=[{"id": "a", "name": "get_events", "args": {}}]),
        ]
        closed = _close_dangling_tool_calls(messages)
        assert len(closed) == 3
        assert isinstance(closed[-1], ToolMessage)
        assert closed[-1].tool_call_id == "a"
        assert json.loads(closed[-1].content)["skipped"] is True

    def test_closed_history_left_alone(self):
        messages = [HumanMessage(content="hi"), AIMessage(content="hello")]
        assert _close_dangling_tool_calls(messages) == messages

    def test_best_partial_stops_at_user_message(self):
        messages = [AIMessage(content="Old answer"), HumanMessage(content="new question")]
        assert _best_partial(messages, succeeded=0) is None


# ── Sessions ─────────────────────────────────────────────────────────


class TestSessions:
    def test_busy_session_is_rejected(self, agent, store, accounts):
        with store.lock(SESSION):
            with pytest.raises(SessionBusyError):
                agent.run_turn("Hello", SESSION, accounts)

    def test_sessions_are_isolated(self, agent, accounts, completion):
        completion.turns = [_say("One"), _say("Two")]
        agent.run_turn("Hello", "a", accounts)
        agent.run_turn("Hello", "b", accounts)
        assert len(agent.conversation("a").history) == 2
        assert len(agent.conversation("b").history) == 2

    def test_unknown_conversation(self, agent):
        assert agent.conversation("never-seen") is None


# ── Booking route ────────────────────────────────────────────────────


class TestBookingRoute:
    def test_booking_request_skips_the_model(self, ask, completion, voice, calendar):
        voice.finish("Great, I have you down for 8 PM. See you then.")
        with patch("src.booking.time.sleep"):
            result = ask("Book me a haircut on 2026-10-22 at 6pm, the number is 778-555-1234")

        assert completion.calls == []
        assert calendar.writes[0][1].start == _at(20, day=22)
        assert "8 PM" in result.content
        assert "6 PM" not in result.content

    def test_booking_conflict_then_pick(self, ask, completion, voice, calendar):
        calendar.add("work", "Team dinner", _at(18, day=22), _at(19, day=22))
        first = ask("Book me a haircut on 2026-10-22 at 6pm, the number is 778-555-1234")
        assert first.conflict is True
        assert len(first.alternatives) == 3
        assert voice.calls == []

        voice.finish("Sure, you're booked for 7 PM. See you then.")
        with patch("src.booking.time.sleep"):
            second = ask("second")
        assert completion.calls == []
        assert calendar.writes[0][1].start == _at(19, day=22)
        assert second.conflict is False

    def test_unrelated_question_after_booking_conflict_reaches_the_model(
        self, ask, agent, completion, voice, calendar,
    ):
        calendar.add("work", "Team dinner", _at(18, day=22), _at(19, day=22))
        first = ask("Book me a haircut on 2026-10-22 at 6pm, the number is 778-555-1234")
        assert first.conflict is True

        completion.turns = [_say("Your first meeting tomorrow is at 9 AM.")]
        second = ask("What's my first meeting tomorrow morning?")

        assert voice.calls == []
        assert len(completion.calls) == 1
        assert second.content == "Your first meeting tomorrow is at 9 AM."
        assert agent.conversation(SESSION).pending_conflict is None


# ── Proposal lifetime ────────────────────────────────────────────────


class TestPendingProposal:
    def _offer(self, ask, completion, calendar):
        board = calendar.add("work", "Board meeting", _at(15), _at(16))
        completion.turns = [
            _call("create_event", summary="Sync", start="2026-10-21T15:00:00", end="2026-10-21T16:00:00"),
            _say("That clashes with your board meeting. Which alternative would you like?"),
        ]
        first = ask("Create 'Sync' on Wednesday at 3pm")
        assert first.conflict is True
        return board

    def test_new_request_supersedes_offer(self, ask, agent, completion, calendar):
        self._offer(ask, completion, calendar)
        completion.turns = [_say("You have nothing on Friday.")]
        ask("Actually, what's on Friday?")
        assert agent.conversation(SESSION).pending_conflict is None

    def test_pick_two_turns_later_does_not_commit(self, ask, agent, completion, calendar):
        self._offer(ask, completion, calendar)
        completion.turns = [_say("Great, which of the three times works for you?")]
        ask("yes")
        assert agent.conversation(SESSION).pending_conflict is not None

        completion.turns = [
            _call("select_alternative", "tc-3", selection="second"),
            _say("Which time would you like?"),
        ]
        ask("the second one")
        assert calendar.writes == []
        assert agent.conversation(SESSION).pending_conflict is None

    def test_yes_with_pending_offer_does_not_delete(self, ask, completion, calendar):
        board = self._offer(ask, completion, calendar)
        completion.turns = [
            _call("delete_event", "tc-2", event_id=board.id, account_id="work"),
            _say("Which of the three times would you like?"),
        ]
        ask("yes")

        assert calendar.writes == []
        skipped = _tool_results(completion.calls[-1])[-1]
        assert skipped["skipped"] is True
