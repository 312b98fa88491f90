"""Appointment booking over the phone.

Strictly sequential::

    extract request → availability check ──(busy)──▶ alternatives, stop
                           │
                         (free)
                           ▼
                     place call → poll until ended → confirmed? ──(no)──▶ failure, no writes
                                                           │
                                                         (yes)
                                                           ▼
                                  calendar event at the CONFIRMED time

The time written to the calendar and the time told to the user are both
taken from ``BookingAttempt.confirmed_*``; when the business moved the
time, the user is told so without repeating the requested time.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, tzinfo
from datetime import time as clock
from typing import Any

from src.config import (
    CALL_MAX_POLL_ATTEMPTS,
    CALL_POLL_INTERVAL_SECONDS,
    DEFAULT_BOOKING_PHONE,
    USER_DISPLAY_NAME,
)
from src.conflicts import ConflictEngine, describe_alternatives
from src.errors import CallNotConfirmed, ConflictRevalidationFailure, PortTransportError, TurnCancelled
from src.models import (
    BookingAttempt,
    CalendarEvent,
    CallState,
    CallStatus,
    ConflictProposal,
    EventDraft,
    ProposalKind,
    ProposalState,
    SlotOption,
    TurnResult,
)
from src.parsing import (
    BOOKING_INTENT_RE,
    BookingRequest,
    analyze_call_outcome,
    extract_booking_request,
    normalize_phone_number,
    validate_call,
)
from src.ports import CalendarPort, VoiceCallPort
from src.progress import ProgressSink
from src.slots import format_clock, shift

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    CallState.QUEUED.value: "Call queued...",
    CallState.RINGING.value: "Call ringing...",
    CallState.IN_PROGRESS.value: "Call in progress...",
    CallState.ENDED.value: "Call ended.",
}


def wait_for_call(
    voice: VoiceCallPort,
    call_id: str,
    progress: ProgressSink,
    *,
    cancel: threading.Event | None = None,
    interval: float = CALL_POLL_INTERVAL_SECONDS,
    max_attempts: int = CALL_MAX_POLL_ATTEMPTS,
) -> CallStatus:
    """Poll a call on a fixed interval until it has ended.

    Gives up after ``max_attempts`` polls.  Cancelling stops the polling
    but not the call itself, which the provider lets run to completion.
    """
    last_status = None
    for attempt in range(1, max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise TurnCancelled(f"Stopped waiting for call {call_id}")
        time.sleep(interval)
        status = voice.poll_status(call_id)
        if status.status != last_status and status.status in STATUS_LABELS:
            progress.update(STATUS_LABELS[status.status])
            last_status = status.status
        if status.status == CallState.ENDED.value:
            logger.info("Call %s ended after %d poll(s) (%s)", call_id, attempt, status.ended_reason)
            return status
    raise PortTransportError(
        f"Call {call_id} was still running after {max_attempts} status checks",
        service="voice",
    )


def _service_title(service: str) -> str:
    return service[:1].upper() + service[1:]


class BookingFlow:
    def __init__(
        self,
        calendar: CalendarPort,
        voice: VoiceCallPort | None,
        engine: ConflictEngine,
        tz: tzinfo,
        *,
        default_phone: str | None = DEFAULT_BOOKING_PHONE,
        user_name: str = USER_DISPLAY_NAME,
        poll_interval: float = CALL_POLL_INTERVAL_SECONDS,
        max_polls: int = CALL_MAX_POLL_ATTEMPTS,
    ) -> None:
        self._calendar = calendar
        self._voice = voice
        self._engine = engine
        self._tz = tz
        self._default_phone = default_phone
        self._user_name = user_name
        self._poll_interval = poll_interval
        self._max_polls = max_polls

    # ── Entry points ────────────────────────────────────────────────

    def handle_message(self, message: str, context, progress: ProgressSink) -> TurnResult:
        """Run a whole turn for a message classified as a booking request."""
        pending = context.session.pending(ProposalKind.BOOKING)
        if pending is not None and not BOOKING_INTENT_RE.search(message):
            option = self._engine.select(pending, message)
            if option is None:
                pending.turn = context.session.turns
                return TurnResult(
                    content=(
                        "I couldn't match that to one of the options:"
                        f"{describe_alternatives(pending.alternatives)}\nWhich one would you like?"
                    ),
                    alternatives=list(pending.alternatives),
                    conflict=True,
                )
            result = self.book_option(pending, option, context, progress)
        else:
            today = datetime.now(self._tz).date()
            result = self.book(extract_booking_request(message, today), context, progress)
        return self._to_turn_result(result, context)

    def book(self, request: BookingRequest, context, progress: ProgressSink) -> dict[str, Any]:
        start = datetime.combine(request.date, clock(request.time.hour, request.time.minute), tzinfo=self._tz)
        attempt = BookingAttempt(
            service=request.service,
            requested_date=request.date,
            requested_start=start,
            requested_end=shift(start, timedelta(minutes=request.duration_minutes)),
            phone=request.phone,
        )
        logger.info(
            "Booking %s on %s at %s", attempt.service, attempt.requested_date, format_clock(start, self._tz),
        )
        return self._run(attempt, context, progress)

    def book_option(
        self, proposal: ConflictProposal, option: SlotOption, context, progress: ProgressSink,
    ) -> dict[str, Any]:
        """Book a previously offered alternative, re-checking it first."""
        try:
            self._engine.validate(proposal, option, context.accounts)
        except ConflictRevalidationFailure as exc:
            fresh = self._engine.regenerate(proposal, context.accounts, turn=context.session.turns)
            context.session.pending_conflict = fresh if fresh.alternatives else None
            message = str(exc)
            if fresh.alternatives:
                message += f" Here are updated options:{describe_alternatives(fresh.alternatives)}"
            return {
                "error": True,
                "conflict": True,
                "message": message,
                "alternatives": [o.to_dict() for o in fresh.alternatives],
            }
        except PortTransportError as exc:
            return {"error": True, "message": f"I couldn't check availability: {exc}"}

        base = proposal.booking
        attempt = replace(
            base,
            requested_date=option.start.astimezone(self._tz).date(),
            requested_start=option.start,
            requested_end=option.end,
            confirmed_start=None,
            confirmed_end=None,
            call_id=None,
            transcript="",
        )
        result = self._run(attempt, context, progress, availability_checked=True)
        if result.get("success"):
            proposal.state = ProposalState.COMMITTED
        else:
            # Still open: the user may try another of the options next turn
            proposal.state = ProposalState.PROPOSED
            proposal.turn = context.session.turns
        return result

    # ── Steps ───────────────────────────────────────────────────────

    def _run(
        self,
        attempt: BookingAttempt,
        context,
        progress: ProgressSink,
        *,
        availability_checked: bool = False,
    ) -> dict[str, Any]:
        account = context.session.primary_account
        if account is None:
            return {"error": True, "message": "No calendar account is linked to this session."}

        if not availability_checked:
            try:
                conflict = self._check_availability(attempt, context, progress)
            except PortTransportError as exc:
                logger.error("Booking availability check failed: %s", exc)
                return {"error": True, "message": f"I couldn't check availability: {exc}"}
            if conflict is not None:
                return conflict

        phone = normalize_phone_number(attempt.phone or self._default_phone)
        if phone is None:
            return {
                "error": True,
                "message": "Please give me the phone number of the business (e.g. +17785551234) so I can call them.",
            }
        attempt.phone = phone
        if self._voice is None:
            return {"error": True, "message": "Phone booking is not configured on this server."}

        try:
            progress.update(f"Calling {phone} to book your {attempt.service}...")
            attempt.call_id = self._voice.place_call(phone, self._script(attempt))
            status = wait_for_call(
                self._voice, attempt.call_id, progress,
                cancel=context.cancel, interval=self._poll_interval, max_attempts=self._max_polls,
            )
            attempt.transcript = status.transcript or status.summary
            self._confirm(attempt, status)
        except CallNotConfirmed as exc:
            logger.info("Booking call %s not confirmed: %s", attempt.call_id, exc)
            progress.error(f"Booking not completed: {exc}")
            return {"error": True, "message": f"Booking not completed: {exc}", "transcript": attempt.transcript}
        except PortTransportError as exc:
            logger.error("Booking call failed: %s", exc)
            return {"error": True, "message": f"I couldn't complete the booking call: {exc}"}

        return self._commit(attempt, account, context, progress)

    def _check_availability(self, attempt: BookingAttempt, context, progress: ProgressSink) -> dict[str, Any] | None:
        progress.update("Checking calendar availability...")
        start, end = attempt.requested_start, attempt.requested_end
        conflicts = self._engine.find_conflicts(context.accounts, start, end)
        if not conflicts:
            return None

        primary = context.session.primary_account
        subject = CalendarEvent(
            id=None, account_id=primary.id, summary=_service_title(attempt.service), start=start, end=end,
        )
        proposal = self._engine.propose(
            ProposalKind.BOOKING, subject, context.accounts,
            conflicts=conflicts, turn=context.session.turns, booking=attempt,
        )
        context.session.pending_conflict = proposal if proposal.alternatives else None
        if not proposal.alternatives:
            return {
                "conflict": True,
                "alternatives": [],
                "message": "The requested time is not available, and neither are the nearby times. "
                           "What other time would work?",
            }
        return {
            "conflict": True,
            "alternatives": [o.to_dict() for o in proposal.alternatives],
            "message": (
                f"The requested time is not available. Here are {len(proposal.alternatives)} "
                f"alternative time slots:{describe_alternatives(proposal.alternatives)}\n"
                "Please select one or suggest a different time."
            ),
        }

    def _script(self, attempt: BookingAttempt) -> str:
        start = attempt.requested_start.astimezone(self._tz)
        return (
            f"You are calling to book a {attempt.service} for {self._user_name}. "
            f"Ask for an appointment on {start.strftime('%A %d %B %Y')} between "
            f"{format_clock(attempt.requested_start, self._tz)} and {format_clock(attempt.requested_end, self._tz)}. "
            "If that time is not available, ask for the closest opening on the same day and book that instead. "
            "Before ending the call, clearly confirm the date and the exact time that was booked."
        )

    def _confirm(self, attempt: BookingAttempt, status: CallStatus) -> None:
        """Fill in ``confirmed_*`` or raise :class:`CallNotConfirmed`."""
        failure = validate_call(status.ended_reason, attempt.transcript, attempt.phone)
        if failure:
            raise CallNotConfirmed(failure)
        outcome = analyze_call_outcome(attempt.transcript)
        if not outcome.confirmed:
            raise CallNotConfirmed(outcome.reason)

        if outcome.time is not None:
            confirmed = datetime.combine(
                attempt.requested_date, clock(outcome.time.hour, outcome.time.minute), tzinfo=self._tz,
            )
        else:
            confirmed = attempt.requested_start
        attempt.confirmed_start = confirmed
        attempt.confirmed_end = shift(confirmed, attempt.duration)

    def _commit(self, attempt: BookingAttempt, account, context, progress: ProgressSink) -> dict[str, Any]:
        confirmed_at = format_clock(attempt.confirmed_start, self._tz)
        day = attempt.confirmed_start.astimezone(self._tz).strftime("%A %d %B")
        progress.update("Creating calendar event...")
        try:
            event = self._calendar.create_event(
                account,
                EventDraft(
                    summary=_service_title(attempt.service),
                    start=attempt.confirmed_start,
                    end=attempt.confirmed_end,
                    description=f"Booked by phone ({attempt.phone}).",
                ),
            )
        except PortTransportError as exc:
            logger.error("Booking confirmed but calendar write failed: %s", exc)
            return {
                "error": True,
                "message": (
                    f"The {attempt.service} was confirmed on the call for {day} at {confirmed_at}, "
                    f"but I couldn't add it to your calendar: {exc}"
                ),
            }

        pending = context.session.pending(ProposalKind.BOOKING)
        if pending is not None:
            context.session.clear_conflict()

        message = f"Your {attempt.service} is booked for {day} at {confirmed_at} and has been added to your calendar."
        if attempt.confirmed_start != attempt.requested_start:
            message += (
                " Please note that this is not the time you originally asked for: "
                f"{confirmed_at} is the time the business confirmed during the call, "
                "so that is what is on your calendar."
            )
        logger.info("Booked %s at %s (requested %s)", attempt.service, confirmed_at,
                    format_clock(attempt.requested_start, self._tz))
        return {
            "success": True,
            "message": message,
            "appointment": {
                **event.to_dict(),
                "service": attempt.service,
                "confirmed_start": attempt.confirmed_start.isoformat(),
                "confirmed_end": attempt.confirmed_end.isoformat(),
            },
            "transcript": attempt.transcript,
        }

    def _to_turn_result(self, result: dict[str, Any], context) -> TurnResult:
        pending = context.session.pending_conflict
        conflict = bool(result.get("conflict"))
        alternatives = None
        if conflict and pending is not None and pending.turn == context.session.turns:
            alternatives = list(pending.alternatives)
        return TurnResult(content=result.get("message", ""), alternatives=alternatives, conflict=conflict)
