"""Availability and reschedule-negotiation tools.

These sit on top of :class:`~src.conflicts.ConflictEngine` and keep the
session's ``pending_conflict`` in sync with what the user was shown.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.conflicts import describe_alternatives
from src.errors import ConflictRevalidationFailure, PortTransportError
from src.guardrails import RESCHEDULE
from src.models import CalendarEvent, EventPatch, ProposalKind
from src.progress import ProgressSink
from src.slots import format_window, generate_alternatives
from src.tools.registry import ToolContext, ToolName, ToolSpec, error_result

logger = logging.getLogger(__name__)


class WindowParams(BaseModel):
    start: datetime = Field(..., description="Start time, ISO 8601")
    end: datetime = Field(..., description="End time, ISO 8601")


class ProposeRescheduleParams(BaseModel):
    event_id: str = Field(..., min_length=1, description="Id of the event to move (from get_events)")
    summary: str = Field(..., description="Event title")
    original_start: datetime
    original_end: datetime
    account_id: str | None = Field(None, description="Account the event lives on")
    preferred_start: datetime | None = Field(
        None, description="Time the user would like instead; alternatives are laid out around it",
    )


class RescheduleEventParams(BaseModel):
    event_id: str = Field(..., min_length=1)
    new_start: datetime
    new_end: datetime
    account_id: str | None = None


class SelectAlternativeParams(BaseModel):
    selection: str = Field(
        ..., min_length=1,
        description='The user\'s pick exactly as said, e.g. "second", "2", "4pm", "16:00"',
    )


def _options_payload(proposal) -> list[dict[str, str]]:
    return [option.to_dict() for option in proposal.alternatives]


# ── Handlers ─────────────────────────────────────────────────────────


def check_availability(args: WindowParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    start, end = context.localize(args.start), context.localize(args.end)
    if end < start:
        return error_result("The end time must not be before the start time.")
    progress.update("Checking calendar availability...")
    try:
        conflicts = context.engine.find_conflicts(context.accounts, start, end)
    except PortTransportError as exc:
        logger.error("check_availability failed: %s", exc)
        return error_result(f"I couldn't check availability: {exc}")
    return {
        "success": True,
        "available": not conflicts,
        "window": format_window(start, end, context.tz),
        "conflicts": [c.to_dict() for c in conflicts],
    }


def find_alternative_slots(args: WindowParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    start, end = context.localize(args.start), context.localize(args.end)
    if end < start:
        return error_result("The end time must not be before the start time.")
    progress.update("Looking for alternative time slots...")
    try:
        free = [
            option for option in generate_alternatives(start, end, context.tz)
            if context.engine.is_window_free(context.accounts, option.start, option.end)
        ]
    except PortTransportError as exc:
        logger.error("find_alternative_slots failed: %s", exc)
        return error_result(f"I couldn't check availability: {exc}")
    return {"success": True, "alternatives": [option.to_dict() for option in free]}


def propose_reschedule_options(
    args: ProposeRescheduleParams, context: ToolContext, progress: ProgressSink,
) -> dict[str, Any]:
    account = context.session.account(args.account_id)
    if account is None:
        return error_result(f"No linked account with id {args.account_id!r}.")
    start, end = context.localize(args.original_start), context.localize(args.original_end)
    if end <= start:
        return error_result("original_end must be after original_start.")

    subject = CalendarEvent(id=args.event_id, account_id=account.id, summary=args.summary, start=start, end=end)
    anchor = context.localize(args.preferred_start) if args.preferred_start else None

    progress.update("Checking availability on all your calendars...")
    try:
        proposal = context.engine.propose(
            ProposalKind.RESCHEDULE, subject, context.accounts,
            turn=context.session.turns, anchor=anchor,
        )
    except PortTransportError as exc:
        logger.error("propose_reschedule_options failed: %s", exc)
        return error_result(f"I couldn't check availability: {exc}")

    if not proposal.alternatives:
        context.session.clear_conflict()
        return {
            "success": False,
            "alternatives": [],
            "message": "None of the nearby times are free on all your calendars. What other time would work?",
        }

    context.session.pending_conflict = proposal
    return {
        "success": True,
        "alternatives": _options_payload(proposal),
        "message": (
            f"Here are {len(proposal.alternatives)} options for moving '{args.summary}':"
            f"{describe_alternatives(proposal.alternatives)}\n"
            "Which option would you prefer, or would you like to suggest a different time?"
        ),
    }


def reschedule_event(args: RescheduleEventParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    account = context.session.account(args.account_id)
    if account is None:
        return error_result(f"No linked account with id {args.account_id!r}.")
    start, end = context.localize(args.new_start), context.localize(args.new_end)
    if end <= start:
        return error_result("new_end must be after new_start.")

    progress.update("Double-checking that the new time is still free...")
    try:
        if not context.engine.is_window_free(context.accounts, start, end, ignore_event_id=args.event_id):
            return error_result(
                "Sorry, that time slot is no longer available. Please choose a different time.",
                conflict=True,
            )
        event = context.services.calendar.update_event(account, args.event_id, EventPatch(start=start, end=end))
    except PortTransportError as exc:
        logger.error("reschedule_event %s failed: %s", args.event_id, exc)
        return error_result(f"I couldn't reschedule the event: {exc}")

    pending = context.session.pending(ProposalKind.RESCHEDULE)
    if pending is not None and pending.subject.id == args.event_id:
        context.session.clear_conflict()
    return {
        "success": True,
        "event": event.to_dict(),
        "message": f"Moved '{event.summary}' to {format_window(event.start, event.end, context.tz)}.",
    }


def select_alternative(args: SelectAlternativeParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    proposal = context.session.pending_conflict
    if proposal is None:
        return error_result("There are no pending alternatives to choose from.")

    option = context.engine.select(proposal, args.selection)
    if option is None:
        # Offered again, so the next reply may still answer it
        proposal.turn = context.session.turns
        return {
            "success": False,
            "needs_selection": True,
            "alternatives": _options_payload(proposal),
            "message": (
                f"I couldn't match '{args.selection}' to one of the options:"
                f"{describe_alternatives(proposal.alternatives)}\nWhich one would you like?"
            ),
        }

    if proposal.kind == ProposalKind.BOOKING:
        return context.booking.book_option(proposal, option, context, progress)

    progress.update(f"Confirming {option.display} is still free...")
    try:
        event = context.engine.commit(proposal, option, context.accounts)
    except ConflictRevalidationFailure as exc:
        try:
            fresh = context.engine.regenerate(proposal, context.accounts, turn=context.session.turns)
        except PortTransportError as port_exc:
            context.session.clear_conflict()
            return error_result(f"{exc} I also couldn't look up new options: {port_exc}")
        context.session.pending_conflict = fresh if fresh.alternatives else None
        message = str(exc) + " Nothing was changed."
        if fresh.alternatives:
            message += f" Here are updated options:{describe_alternatives(fresh.alternatives)}"
        return error_result(message, conflict=True, alternatives=_options_payload(fresh))
    except PortTransportError as exc:
        logger.error("select_alternative commit failed: %s", exc)
        return error_result(f"I couldn't save that change: {exc}")

    context.session.clear_conflict()
    verb = "Moved" if proposal.kind == ProposalKind.RESCHEDULE else "Created"
    return {
        "success": True,
        "event": event.to_dict(),
        "message": f"{verb} '{event.summary}' at {option.display}.",
    }


# ── Catalog ─────────────────────────────────────────────────────────

CONFLICT_TOOLS = [
    ToolSpec(
        ToolName.CHECK_AVAILABILITY,
        "Check whether a time window is free on every linked calendar and list what blocks it.",
        WindowParams,
        check_availability,
    ),
    ToolSpec(
        ToolName.FIND_ALTERNATIVE_SLOTS,
        "Suggest up to three nearby windows (1 hour earlier, 1 hour later, 2 hours later) "
        "that are free on every linked calendar.",
        WindowParams,
        find_alternative_slots,
    ),
    ToolSpec(
        ToolName.PROPOSE_RESCHEDULE_OPTIONS,
        "Offer the user verified-free options for moving an existing event. Does not change anything.",
        ProposeRescheduleParams,
        propose_reschedule_options,
    ),
    ToolSpec(
        ToolName.RESCHEDULE_EVENT,
        "Move an existing event to a new time after re-checking that the new time is free. "
        "Only when the user asked to reschedule or confirmed it.",
        RescheduleEventParams,
        reschedule_event,
        mutating=True,
        confirmation=RESCHEDULE,
    ),
    ToolSpec(
        ToolName.SELECT_ALTERNATIVE,
        "Commit the alternative the user picked from the options you offered "
        '(by position like "second" or by time like "4pm"). Re-checks it is still free first.',
        SelectAlternativeParams,
        select_alternative,
        mutating=True,
        confirmation=RESCHEDULE,
    ),
]
