"""Pure time-window arithmetic: alternatives, overlap and availability.

No I/O.  Every function works on timezone-aware instants; the ``tz``
argument only affects the human-readable ``display`` strings.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone, tzinfo

from src.models import BusyWindow, SlotOption

# (label, offset from the original start); order defines "first/second/third"
ALTERNATIVE_OFFSETS: tuple[tuple[str, timedelta], ...] = (
    ("1 hour earlier", timedelta(minutes=-60)),
    ("1 hour later", timedelta(minutes=60)),
    ("2 hours later", timedelta(minutes=120)),
)


def shift(dt: datetime, delta: timedelta) -> datetime:
    """Move *dt* by *delta* of real elapsed time, keeping its zone.

    Plain ``dt + delta`` on a ``ZoneInfo`` datetime is wall-clock
    arithmetic and is off by an hour across a DST change.
    """
    return (dt.astimezone(timezone.utc) + delta).astimezone(dt.tzinfo)


def elapsed(start: datetime, end: datetime) -> timedelta:
    return end.astimezone(timezone.utc) - start.astimezone(timezone.utc)


def format_clock(dt: datetime, tz: tzinfo | None = None) -> str:
    """'8 PM' on the hour, '8:30 PM' otherwise."""
    local = dt.astimezone(tz) if tz else dt
    hour12 = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    if local.minute:
        return f"{hour12}:{local.minute:02d} {suffix}"
    return f"{hour12} {suffix}"


def format_window(start: datetime, end: datetime, tz: tzinfo | None = None) -> str:
    """Render a window as 'Tue 21 Oct, 2:00 PM to 3:00 PM'."""
    local_start = start.astimezone(tz) if tz else start
    local_end = end.astimezone(tz) if tz else end

    def _hm(dt: datetime) -> str:
        return f"{dt.hour % 12 or 12}:{dt.minute:02d} {'AM' if dt.hour < 12 else 'PM'}"

    day = local_start.strftime("%a %d %b")
    if local_end.date() != local_start.date():
        return f"{day}, {_hm(local_start)} to {local_end.strftime('%a %d %b')}, {_hm(local_end)}"
    return f"{day}, {_hm(local_start)} to {_hm(local_end)}"


def generate_alternatives(
    original_start: datetime,
    original_end: datetime,
    tz: tzinfo | None = None,
) -> list[SlotOption]:
    """Return the three candidate windows around an original window.

    Each option keeps the original duration.  Zero-length windows are
    passed through unchanged; rejecting them is the caller's business.
    """
    duration = elapsed(original_start, original_end)
    options = []
    for label, offset in ALTERNATIVE_OFFSETS:
        start = shift(original_start, offset)
        end = shift(start, duration)
        options.append(SlotOption(label=label, start=start, end=end, display=format_window(start, end, tz)))
    return options


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection: back-to-back windows do not overlap."""
    return a_start < b_end and b_start < a_end


def is_available(candidate: BusyWindow | SlotOption, busy: Iterable[BusyWindow]) -> bool:
    return not any(overlaps(candidate.start, candidate.end, b.start, b.end) for b in busy)
