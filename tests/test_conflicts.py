"""Tests for the propose → validate → commit conflict flow."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from src.errors import ConflictRevalidationFailure, PortTransportError
from src.models import CalendarEvent, ProposalKind, ProposalState

TZ = ZoneInfo("America/Vancouver")


def _at(hour: int, minute: int = 0, day: int = 21) -> datetime:
    return datetime(2026, 10, day, hour, minute, tzinfo=TZ)


def _draft(summary="Sync with Sarah", start=None, end=None, event_id=None, account_id="personal"):
    return CalendarEvent(
        id=event_id, account_id=account_id, summary=summary,
        start=start or _at(15), end=end or _at(16),
    )


# ── Detection ────────────────────────────────────────────────────────


class TestFindConflicts:
    def test_overlap_on_any_account(self, engine, calendar, accounts):
        calendar.add("work", "Standup", _at(15, 30), _at(15, 45))
        conflicts = engine.find_conflicts(accounts, _at(15), _at(16))
        assert len(conflicts) == 1
        assert conflicts[0].account.id == "work"
        assert conflicts[0].event.summary == "Standup"

    def test_back_to_back_is_not_a_conflict(self, engine, calendar, accounts):
        calendar.add("personal", "Lunch", _at(14), _at(15))
        assert engine.find_conflicts(accounts, _at(15), _at(16)) == []

    def test_moved_event_does_not_conflict_with_itself(self, engine, calendar, accounts):
        event = calendar.add("personal", "Dentist", _at(15), _at(16))
        assert engine.find_conflicts(accounts, _at(15, 30), _at(16, 30), ignore_event_id=event.id) == []

    def test_is_window_free(self, engine, calendar, accounts):
        calendar.add("work", "Review", _at(10), _at(11))
        assert not engine.is_window_free(accounts, _at(10, 30), _at(11, 30))
        assert engine.is_window_free(accounts, _at(11), _at(12))


# ── Scenario: new event collides ─────────────────────────────────────


class TestCreateConflict:
    def test_three_free_alternatives_then_commit_second(self, engine, calendar, accounts):
        calendar.add("personal", "Existing", _at(15), _at(16))

        proposal = engine.propose(ProposalKind.CREATE, _draft(), accounts)
        assert [o.start for o in proposal.alternatives] == [_at(14), _at(16), _at(17)]
        assert proposal.state == ProposalState.PROPOSED

        option = engine.select(proposal, "the second one")
        assert option.start == _at(16)

        event = engine.commit(proposal, option, accounts)
        assert proposal.state == ProposalState.COMMITTED
        assert (event.start, event.end) == (_at(16), _at(17))
        assert [kind for kind, _ in calendar.writes] == ["create"]

    def test_busy_alternatives_are_not_offered(self, engine, calendar, accounts):
        calendar.add("personal", "Existing", _at(15), _at(16))
        calendar.add("work", "Gym", _at(14), _at(15))
        proposal = engine.propose(ProposalKind.CREATE, _draft(), accounts)
        assert [o.start for o in proposal.alternatives] == [_at(16), _at(17)]

    def test_alternatives_keep_duration(self, engine, calendar, accounts):
        proposal = engine.propose(ProposalKind.CREATE, _draft(end=_at(15, 30)), accounts)
        for option in proposal.alternatives:
            assert (option.end - option.start).total_seconds() == 30 * 60


# ── Scenario: reschedule ─────────────────────────────────────────────


class TestRescheduleConflict:
    def test_commit_updates_the_existing_event(self, engine, calendar, accounts):
        subject = calendar.add("personal", "Dentist", _at(15), _at(16))
        proposal = engine.propose(ProposalKind.RESCHEDULE, subject, accounts)
        # The event's own slot must not block its neighbours
        assert len(proposal.alternatives) == 3

        option = engine.select(proposal, "5pm")
        event = engine.commit(proposal, option, accounts)
        assert event.id == subject.id
        assert (event.start, event.end) == (_at(17), _at(18))
        assert calendar.writes == [("update", event)]

    def test_anchor_moves_the_alternatives(self, engine, calendar, accounts):
        subject = calendar.add("personal", "Dentist", _at(9), _at(10))
        proposal = engine.propose(ProposalKind.RESCHEDULE, subject, accounts, anchor=_at(13))
        assert [o.start for o in proposal.alternatives] == [_at(12), _at(14), _at(15)]


# ── Revalidation ─────────────────────────────────────────────────────


class TestRevalidation:
    def test_slot_taken_after_proposal_writes_nothing(self, engine, calendar, accounts):
        calendar.add("personal", "Existing", _at(15), _at(16))
        proposal = engine.propose(ProposalKind.CREATE, _draft(), accounts)
        option = engine.select(proposal, "2nd")

        calendar.add("work", "Sneaky booking", _at(16), _at(17))

        with pytest.raises(ConflictRevalidationFailure, match="no longer available"):
            engine.commit(proposal, option, accounts)
        assert proposal.state == ProposalState.REJECTED
        assert calendar.writes == []

    def test_regenerate_after_rejection(self, engine, calendar, accounts):
        calendar.add("personal", "Existing", _at(15), _at(16))
        proposal = engine.propose(ProposalKind.CREATE, _draft(), accounts, turn=1)
        calendar.add("work", "Sneaky booking", _at(16), _at(17))

        fresh = engine.regenerate(proposal, accounts, turn=2)
        assert fresh.turn == 2
        assert fresh.state == ProposalState.PROPOSED
        assert [o.start for o in fresh.alternatives] == [_at(14), _at(17)]

    def test_transport_error_leaves_proposal_open(self, engine, calendar, accounts):
        proposal = engine.propose(ProposalKind.CREATE, _draft(), accounts)
        option = proposal.alternatives[0]
        calendar.fail_with = PortTransportError("down", service="fake", status_code=503)

        with pytest.raises(PortTransportError):
            engine.commit(proposal, option, accounts)
        assert proposal.state == ProposalState.PROPOSED
        assert calendar.writes == []

    def test_booking_proposals_are_not_committed_here(self, engine, accounts):
        proposal = engine.propose(ProposalKind.BOOKING, _draft(), accounts)
        with pytest.raises(ValueError):
            engine.commit(proposal, proposal.alternatives[0], accounts)


class TestSelect:
    @pytest.mark.parametrize(
        ("reply", "hour"),
        [("first", 14), ("option 2", 16), ("3rd", 17), ("4pm", 16), ("17:00", 17)],
    )
    def test_resolves_reply(self, engine, accounts, reply, hour):
        proposal = engine.propose(ProposalKind.CREATE, _draft(), accounts)
        assert engine.select(proposal, reply).start == _at(hour)

    @pytest.mark.parametrize("reply", ["whatever works", "9pm", "fourth"])
    def test_unmatched_reply(self, engine, accounts, reply):
        proposal = engine.propose(ProposalKind.CREATE, _draft(), accounts)
        assert engine.select(proposal, reply) is None
