"""Outbound phone call tools: general calls and appointment booking."""

from __future__ import annotations

import logging
import datetime as dt
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.errors import PortTransportError
from src.booking import wait_for_call
from src.parsing import (
    DEFAULT_DURATION_MINUTES,
    BookingRequest,
    extract_phone,
    normalize_phone_number,
    parse_clock_time,
)
from src.progress import ProgressSink
from src.tools.registry import ToolContext, ToolName, ToolSpec, error_result

logger = logging.getLogger(__name__)


class PlaceCallParams(BaseModel):
    task: str = Field(..., min_length=1, description="What the call should achieve, in plain language")
    phone: str | None = Field(None, description="Number to call, ideally E.164 (+17785551234)")


class BookAppointmentParams(BaseModel):
    service: str = Field(..., min_length=1, description="Type of service (hair, nails, doctor...)")
    date: dt.date = Field(..., description="Date in YYYY-MM-DD format")
    time: str = Field(
        ..., description='Time exactly as the user said it (e.g. "8am", "2pm", "14:30"). Do not convert it.',
    )
    duration_minutes: int = Field(DEFAULT_DURATION_MINUTES, ge=5, le=480)
    phone: str | None = Field(None, description="The business's phone number")

    @field_validator("time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        if parse_clock_time(value) is None:
            raise ValueError(f"{value!r} is not a valid time of day")
        return value


def place_call(args: PlaceCallParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    voice = context.services.voice
    if voice is None:
        return error_result("Phone calls are not configured on this server.")

    # A number written in the task itself beats one the model filled in
    target = normalize_phone_number(extract_phone(args.task)) or normalize_phone_number(args.phone)
    if target is None:
        return error_result(
            "Please provide a valid phone number to call (e.g., +17785551234 or 778-555-1234)."
        )

    progress.update(f"Calling {target}...")
    try:
        call_id = voice.place_call(target, args.task)
        status = wait_for_call(voice, call_id, progress, cancel=context.cancel)
    except PortTransportError as exc:
        logger.error("place_call to %s failed: %s", target, exc)
        return error_result(f"The call could not be completed: {exc}")

    return {
        "success": status.ended_reason not in {"no-answer", "busy", "failed"},
        "call_id": call_id,
        "ended_reason": status.ended_reason,
        "summary": status.summary,
        "transcript": status.transcript,
    }


def book_appointment(args: BookAppointmentParams, context: ToolContext, progress: ProgressSink) -> dict[str, Any]:
    request = BookingRequest(
        service=args.service,
        date=args.date,
        time=parse_clock_time(args.time),
        duration_minutes=args.duration_minutes,
        phone=args.phone,
    )
    progress.update("Starting booking: availability check, phone call, then calendar event...")
    return context.booking.book(request, context, progress)


CALL_TOOLS = [
    ToolSpec(
        ToolName.PLACE_CALL,
        "Place a general outbound phone call (not for booking appointments) to deliver a "
        "message or ask a simple question, and wait for the transcript.",
        PlaceCallParams,
        place_call,
        mutating=True,
    ),
    ToolSpec(
        ToolName.BOOK_APPOINTMENT,
        "Book an appointment with a business: checks the calendar, phones the business, and "
        "only adds the event once the call confirms it, at the confirmed time.",
        BookAppointmentParams,
        book_appointment,
        mutating=True,
    ),
]
