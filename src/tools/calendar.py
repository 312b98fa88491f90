"""Calendar tools: list, create (with conflict detection), update, delete.

Every handler returns a plain dict.  Port failures are caught here and
turned into ``{"error": True, "message": ...}`` for the model to read.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.conflicts import describe_alternatives
from src.errors import PortTransportError
from src.guardrails import DELETE, RESCHEDULE
from src.models import AccountRef, CalendarEvent, EventDraft, EventPatch, ProposalKind
from src.progress import ProgressSink
from src.slots import format_window, overlaps
from src.tools.registry import ToolContext, ToolName, ToolSpec, error_result

logger = logging.getLogger(__name__)


# ── Parameter schemas ────────────────────────────────────────────────


class GetEventsParams(BaseModel):
    time_min: datetime = Field(..., description="Start of the range, ISO 8601 (e.g. 2026-10-21T00:00:00)")
    time_max: datetime = Field(..., description="End of the range, ISO 8601")
    account_id: str | None = Field(None, description="Only this account; omit to check every linked account")


class CreateEventParams(BaseModel):
    summary: str = Field(..., min_length=1, description="Event title")
    start: datetime = Field(..., description="Start time, ISO 8601")
    end: datetime = Field(..., description="End time, ISO 8601")
    attendees: list[str] = Field(default_factory=list, description="Attendee emails or contact names")
    description: str | None = Field(None, description="Optional event notes")
    account_id: str | None = Field(None, description="Account to create it on; defaults to the primary account")


class UpdateEventParams(BaseModel):
    event_id: str = Field(..., min_length=1)
    account_id: str | None = None
    summary: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    attendees: list[str] | None = None


class DeleteEventParams(BaseModel):
    event_id: str = Field(..., min_length=1)
    account_id: str | None = None


class DeleteMultipleEventsParams(BaseModel):
    event_ids: list[str] = Field(..., min_length=1)
    account_id: str | None = None


# ── Helpers ─────────────────────────────────────────────────────────


def _resolve_account(context: ToolContext, account_id: str | None) -> AccountRef | None:
    return context.session.account(account_id)


def _no_account(account_id: str | None) -> dict[str, Any]:
    if account_id:
        return error_result(f"No linked account with id {account_id!r}.")
    return error_result("No calendar account is linked to this session.")


def resolve_attendees(context: ToolContext, account: AccountRef, names: list[str]) -> tuple[list[str], list[str]]:
    """Turn contact names into emails.  Returns (emails, unresolved names)."""
    emails, missing = [], []
    for name in names:
        if "@" in name:
            emails.append(name.strip())
            continue
        email = context.services.contacts.find_email_by_name(account, name.strip())
        if email:
            emails.append(email)
        else:
            missing.append(name)
    return emails, missing


def cross_account_overlaps(events: list[CalendarEvent]) -> list[dict[str, Any]]:
    """Pairs of events on *different* accounts that overlap each other."""
    found = []
    for i, first in enumerate(events):
        for second in events[i + 1:]:
            if first.account_id == second.account_id:
                continue
            if overlaps(first.start, first.end, second.start, second.end):
                found.append({"first": first.to_dict(), "second": second.to_dict()})
    return found


# ── Handlers ─────────────────────────────────────────────────────────


def get_events(args: GetEventsParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    start, end = context.localize(args.time_min), context.localize(args.time_max)
    if end <= start:
        return error_result("time_max must be after time_min.")

    if args.account_id:
        account = _resolve_account(context, args.account_id)
        if account is None:
            return _no_account(args.account_id)
        accounts = [account]
    else:
        accounts = list(context.accounts)
    if not accounts:
        return _no_account(None)

    progress.update(f"Checking {len(accounts)} calendar(s)...")
    events: list[CalendarEvent] = []
    failures = []
    for account in accounts:
        try:
            events.extend(context.services.calendar.list_events(account, start, end))
        except PortTransportError as exc:
            logger.error("Listing events for %s failed: %s", account.id, exc)
            failures.append({"account_id": account.id, "message": str(exc)})

    if failures and len(failures) == len(accounts):
        return error_result("I couldn't read your calendar right now.", failures=failures)

    events.sort(key=lambda e: e.start)
    result: dict[str, Any] = {
        "success": True,
        "count": len(events),
        "events": [
            {**e.to_dict(), "display": format_window(e.start, e.end, context.tz)} for e in events
        ],
        "conflicts": cross_account_overlaps(events),
    }
    if failures:
        result["failures"] = failures
    return result


def create_event(args: CreateEventParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    start, end = context.localize(args.start), context.localize(args.end)
    if end <= start:
        return error_result("The end time must be after the start time.")
    account = _resolve_account(context, args.account_id)
    if account is None:
        return _no_account(args.account_id)

    # A new request supersedes whatever was being negotiated before
    context.session.clear_conflict()

    try:
        attendees, missing = resolve_attendees(context, account, args.attendees)
        if missing:
            return error_result(
                f"I couldn't find an email address for {', '.join(missing)}. "
                "Please ask the user for it."
            )

        progress.update("Checking calendar availability...")
        conflicts = context.engine.find_conflicts(context.accounts, start, end)
        if conflicts:
            subject = CalendarEvent(
                id=None,
                account_id=account.id,
                summary=args.summary,
                start=start,
                end=end,
                attendees=attendees,
                description=args.description,
            )
            proposal = context.engine.propose(
                ProposalKind.CREATE, subject, context.accounts,
                conflicts=conflicts, turn=context.session.turns,
            )
            context.session.pending_conflict = proposal
            blocking = ", ".join(f"'{c.event.summary}' ({c.account.title})" for c in conflicts)
            if proposal.alternatives:
                message = (
                    f"I found a scheduling conflict with {blocking}. "
                    f"Here are {len(proposal.alternatives)} available alternative time slots:"
                    f"{describe_alternatives(proposal.alternatives)}\n"
                    "Which one would you like, or would you prefer a different time?"
                )
            else:
                message = (
                    f"I found a scheduling conflict with {blocking}, and none of the nearby "
                    "times are free either. What other time would work?"
                )
            return {
                "conflict": True,
                "message": message,
                "conflicting_events": [c.to_dict() for c in conflicts],
                "alternatives": [o.to_dict() for o in proposal.alternatives],
                "original_event": subject.to_dict(),
            }

        progress.update("Creating calendar event...")
        event = context.services.calendar.create_event(
            account,
            EventDraft(summary=args.summary, start=start, end=end, attendees=attendees, description=args.description),
        )
    except PortTransportError as exc:
        logger.error("create_event failed: %s", exc)
        return error_result(f"I couldn't create the event: {exc}")

    return {
        "success": True,
        "event": event.to_dict(),
        "message": f"Created '{event.summary}' for {format_window(event.start, event.end, context.tz)}.",
    }


def update_event(args: UpdateEventParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    account = _resolve_account(context, args.account_id)
    if account is None:
        return _no_account(args.account_id)
    start = context.localize(args.start) if args.start else None
    end = context.localize(args.end) if args.end else None
    if start and end and end <= start:
        return error_result("The end time must be after the start time.")

    try:
        attendees = None
        if args.attendees is not None:
            attendees, missing = resolve_attendees(context, account, args.attendees)
            if missing:
                return error_result(f"I couldn't find an email address for {', '.join(missing)}.")
        progress.update("Updating calendar event...")
        event = context.services.calendar.update_event(
            account, args.event_id,
            EventPatch(summary=args.summary, start=start, end=end, attendees=attendees),
        )
    except PortTransportError as exc:
        logger.error("update_event %s failed: %s", args.event_id, exc)
        return error_result(f"I couldn't update the event: {exc}")
    return {"success": True, "event": event.to_dict(), "message": f"Updated '{event.summary}'."}


def delete_event(args: DeleteEventParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    account = _resolve_account(context, args.account_id)
    if account is None:
        return _no_account(args.account_id)
    try:
        progress.update("Deleting calendar event...")
        context.services.calendar.delete_event(account, args.event_id)
    except PortTransportError as exc:
        logger.error("delete_event %s failed: %s", args.event_id, exc)
        return error_result(f"I couldn't delete the event: {exc}")
    return {"success": True, "event_id": args.event_id, "message": "Event deleted."}


def delete_multiple_events(
    args: DeleteMultipleEventsParams, context: ToolContext, progress: ProgressSink,
) -> dict[str, Any]:
    account = _resolve_account(context, args.account_id)
    if account is None:
        return _no_account(args.account_id)

    progress.update(f"Deleting {len(args.event_ids)} events...")
    results = []
    for event_id in args.event_ids:
        try:
            context.services.calendar.delete_event(account, event_id)
            results.append({"event_id": event_id, "deleted": True})
        except PortTransportError as exc:
            logger.error("delete_event %s failed: %s", event_id, exc)
            results.append({"event_id": event_id, "deleted": False, "message": str(exc)})

    deleted = sum(1 for r in results if r["deleted"])
    failed = len(results) - deleted
    return {
        "success": deleted > 0,
        "deleted": deleted,
        "failed": failed,
        "results": results,
        "message": f"Deleted {deleted} of {len(results)} events." + (f" {failed} failed." if failed else ""),
    }


# ── Catalog ─────────────────────────────────────────────────────────

CALENDAR_TOOLS = [
    ToolSpec(
        ToolName.GET_EVENTS,
        "List calendar events in a time range across all linked accounts (or one). "
        "Also reports events on different accounts that overlap each other.",
        GetEventsParams,
        get_events,
    ),
    ToolSpec(
        ToolName.CREATE_EVENT,
        "Create a calendar event. Attendees may be emails or contact names. Checks every "
        "linked account first; on a conflict nothing is created and verified-free "
        "alternatives are returned instead.",
        CreateEventParams,
        create_event,
        mutating=True,
    ),
    ToolSpec(
        ToolName.UPDATE_EVENT,
        "Change an existing event's title, time or attendees. Only after the user asked for it.",
        UpdateEventParams,
        update_event,
        mutating=True,
        confirmation=RESCHEDULE,
    ),
    ToolSpec(
        ToolName.DELETE_EVENT,
        "Delete one event. Only after the user explicitly asked or confirmed.",
        DeleteEventParams,
        delete_event,
        mutating=True,
        confirmation=DELETE,
    ),
    ToolSpec(
        ToolName.DELETE_MULTIPLE_EVENTS,
        "Delete several events at once and report how many succeeded and failed.",
        DeleteMultipleEventsParams,
        delete_multiple_events,
        mutating=True,
        confirmation=DELETE,
    ),
]
