"""Heuristic text extraction: clock times, ordinals, booking requests,
phone numbers and call-transcript outcomes.

Everything here treats its input as untrusted: impossible values (25:00,
13pm, 2026-02-30) are dropped rather than passed on.  Nothing in this
module talks to a port or touches conversation state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

# ── Clock times ──────────────────────────────────────────────────────

# "4pm", "4:30 p.m.", "16:00", and bare "4" (only kept when allow_bare)
_TIME_RE = re.compile(
    r"(?<![\d:/.-])(\d{1,2})(?::(\d{2}))?(?:\s*([ap])\.?\s*m\b\.?)?",
    re.IGNORECASE,
)
_NAMED_TIMES = {"noon": (12, 0), "midday": (12, 0), "midnight": (0, 0)}
_NAMED_TIME_RE = re.compile(r"\b(noon|midday|midnight)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ClockTime:
    hour: int
    minute: int = 0

    def matches(self, dt: datetime) -> bool:
        return dt.hour == self.hour and dt.minute == self.minute


def _to_clock(hour_s: str, minute_s: str | None, meridiem: str | None) -> ClockTime | None:
    hour = int(hour_s)
    minute = int(minute_s) if minute_s is not None else 0
    if not 0 <= minute <= 59:
        return None
    if meridiem:
        # Tolerate "19pm" style input the way people actually type it
        if 13 <= hour <= 23 and meridiem.lower() == "p":
            return ClockTime(hour, minute)
        if not 1 <= hour <= 12:
            return None
        if meridiem.lower() == "p" and hour < 12:
            hour += 12
        elif meridiem.lower() == "a" and hour == 12:
            hour = 0
        return ClockTime(hour, minute)
    if not 0 <= hour <= 23:
        return None
    return ClockTime(hour, minute)


def find_clock_times(text: str, *, allow_bare: bool = False) -> list[ClockTime]:
    """Return every valid clock time mentioned in *text*, in order."""
    found: list[tuple[int, ClockTime]] = []
    for match in _TIME_RE.finditer(text):
        hour_s, minute_s, meridiem = match.groups()
        if minute_s is None and meridiem is None and not allow_bare:
            continue
        clock = _to_clock(hour_s, minute_s, meridiem)
        if clock is not None:
            found.append((match.start(), clock))
    for match in _NAMED_TIME_RE.finditer(text):
        found.append((match.start(), ClockTime(*_NAMED_TIMES[match.group(1).lower()])))
    found.sort(key=lambda item: item[0])
    return [clock for _, clock in found]


def parse_clock_time(text: str) -> ClockTime | None:
    """Return the first explicit clock time in *text* ("4pm", "16:00")."""
    times = find_clock_times(text)
    return times[0] if times else None


# ── Ordinals / selections ───────────────────────────────────────────

_ORDINAL_WORDS = {
    "first": 0, "1st": 0,
    "second": 1, "2nd": 1,
    "third": 2, "3rd": 2,
}
_ORDINAL_RE = re.compile(r"\b(first|second|third|1st|2nd|3rd)\b", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"\b(?:option|number|choice|slot|no\.?)\s*#?\s*([1-3])\b|#([1-3])\b", re.IGNORECASE)
_BARE_DIGIT_RE = re.compile(r"^\s*([1-3])\s*[.!)]?\s*$")


def parse_ordinal(text: str) -> int | None:
    """Map "first" / "2nd" / "option 3" / "1" to a zero-based index."""
    match = _ORDINAL_RE.search(text)
    if match:
        return _ORDINAL_WORDS[match.group(1).lower()]
    match = _NUMBERED_RE.search(text)
    if match:
        return int(match.group(1) or match.group(2)) - 1
    match = _BARE_DIGIT_RE.match(text)
    if match:
        return int(match.group(1)) - 1
    return None


@dataclass(frozen=True)
class Selection:
    index: int | None = None
    time: ClockTime | None = None


def parse_selection(text: str) -> Selection | None:
    """Interpret a reply to a list of options: an ordinal or a clock time."""
    index = parse_ordinal(text)
    if index is not None:
        return Selection(index=index)
    clock = parse_clock_time(text)
    if clock is not None:
        return Selection(time=clock)
    return None


# Words that may surround a pick without making it a new request
_PICK_FILLER_RE = re.compile(
    r"\b(?:the|one|option|number|choice|slot|no|please|ok(?:ay)?|yes|yeah|yep|sure|let'?s|do|go|with|"
    r"i'?ll|take|that|this|works?|is|fine|sounds|good|great|perfect|at|how|about|then)\b",
    re.IGNORECASE,
)


def is_pick(text: str) -> bool:
    """True when the whole reply is a choice ("the second one", "4pm please").

    A question or new request that merely mentions a time or an ordinal
    ("what's my first meeting tomorrow?") is not a pick.
    """
    if parse_selection(text) is None:
        return False
    rest = _ORDINAL_RE.sub(" ", text)
    rest = _TIME_RE.sub(" ", rest)
    rest = _NAMED_TIME_RE.sub(" ", rest)
    rest = _PICK_FILLER_RE.sub(" ", rest)
    return not re.sub(r"[\W_]+", "", rest)


# ── Booking requests ────────────────────────────────────────────────

BOOKING_INTENT_RE = re.compile(
    r"book.*(appointment|hair|barber|cut|massage|nail|doctor|dentist)",
    re.IGNORECASE,
)
_SERVICE_RE = re.compile(r"\b(haircut|hair|barber|cut|massage|nails?|doctor|dentist)\b", re.IGNORECASE)
_SERVICE_NAMES = {
    "haircut": "haircut",
    "hair": "hair appointment",
    "barber": "haircut",
    "cut": "haircut",
    "massage": "massage",
    "nail": "nail appointment",
    "nails": "nail appointment",
    "doctor": "doctor appointment",
    "dentist": "dentist appointment",
}
DEFAULT_SERVICE = "hair appointment"
DEFAULT_BOOKING_HOUR = 16
DEFAULT_DURATION_MINUTES = 60

_TOMORROW_RE = re.compile(r"\b(tomm?orr?ow|tomorow|tmrw|tmr|next day)\b", re.IGNORECASE)
_TODAY_RE = re.compile(r"\b(today|tonight)\b", re.IGNORECASE)
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_US_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_WEEKDAY_RE = re.compile(r"\b(" + "|".join(_WEEKDAYS) + r")\b", re.IGNORECASE)
_MONTHS = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")
_MONTH_DAY_RE = re.compile(
    r"\b(" + "|".join(_MONTHS) + r")[a-z]*\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b",
    re.IGNORECASE,
)
_AT_BARE_HOUR_RE = re.compile(r"\bat\s+(\d{1,2})\b(?!\s*(?::|\d|[ap]\.?\s*m\b))", re.IGNORECASE)
_DURATION_RE = re.compile(
    r"\bfor\s+(\d{1,3}(?:\.\d+)?)\s*(minutes?|mins?|hours?|hrs?|h)\b",
    re.IGNORECASE,
)


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def extract_date(text: str, today: date) -> date | None:
    """Resolve an explicit or relative date mention against *today*."""
    match = _ISO_DATE_RE.search(text)
    if match:
        parsed = _safe_date(*(int(g) for g in match.groups()))
        if parsed:
            return parsed
    match = _US_DATE_RE.search(text)
    if match:
        month, day, year = (int(g) for g in match.groups())
        parsed = _safe_date(year, month, day)
        if parsed:
            return parsed
    if _TOMORROW_RE.search(text):
        return today + timedelta(days=1)
    if _TODAY_RE.search(text):
        return today
    match = _MONTH_DAY_RE.search(text)
    if match:
        month = _MONTHS.index(match.group(1).lower()[:3]) + 1
        parsed = _safe_date(today.year, month, int(match.group(2)))
        if parsed and parsed < today:
            parsed = _safe_date(today.year + 1, month, int(match.group(2)))
        if parsed:
            return parsed
    match = _WEEKDAY_RE.search(text)
    if match:
        target = _WEEKDAYS.index(match.group(1).lower())
        days_ahead = (target - today.weekday()) % 7 or 7
        return today + timedelta(days=days_ahead)
    return None


@dataclass(frozen=True)
class BookingRequest:
    service: str
    date: date
    time: ClockTime
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    phone: str | None = None


def extract_booking_request(message: str, today: date) -> BookingRequest:
    """Pull service, date, start time, duration and phone out of a request.

    Defaults: today, 4 PM, "hair appointment", 60 minutes.  A bare hour
    from 1 to 7 ("at 6") is read as PM.
    """
    service_match = _SERVICE_RE.search(message)
    service = _SERVICE_NAMES[service_match.group(1).lower()] if service_match else DEFAULT_SERVICE

    when = extract_date(message, today) or today

    clock = parse_clock_time(message)
    if clock is None:
        bare = _AT_BARE_HOUR_RE.search(message)
        if bare:
            hour = int(bare.group(1))
            if 1 <= hour <= 7:
                hour += 12
            if 0 <= hour <= 23:
                clock = ClockTime(hour, 0)
    if clock is None:
        clock = ClockTime(DEFAULT_BOOKING_HOUR, 0)

    duration = DEFAULT_DURATION_MINUTES
    match = _DURATION_RE.search(message)
    if match:
        amount = float(match.group(1))
        minutes = amount * 60 if match.group(2).lower().startswith("h") else amount
        if 5 <= minutes <= 8 * 60:
            duration = int(minutes)

    return BookingRequest(
        service=service,
        date=when,
        time=clock,
        duration_minutes=duration,
        phone=normalize_phone_number(extract_phone(message)),
    )


def is_booking_request(message: str, *, booking_pending: bool = False) -> bool:
    """Keyword classification for the booking sub-flow.

    A short pick like "the 5pm one" or "second" also counts while a booking
    conflict is waiting for an answer.
    """
    if BOOKING_INTENT_RE.search(message):
        return True
    return booking_pending and is_pick(message)


# ── Phone numbers ───────────────────────────────────────────────────

_E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")
_PHONE_IN_TEXT_RE = re.compile(r"\+?\d[\d\s().-]{7,}\d")


def extract_phone(text: str) -> str | None:
    # Dates like 2026-10-22 fit the pattern too but are too short
    for match in _PHONE_IN_TEXT_RE.finditer(text or ""):
        if 10 <= len(re.sub(r"\D", "", match.group(0))) <= 15:
            return match.group(0)
    return None


def normalize_phone_number(raw: str | None) -> str | None:
    """Normalise to E.164: 10 digits are North American (+1), 11-15 get '+'."""
    if not raw or not raw.strip():
        return None
    trimmed = raw.strip()
    if _E164_RE.match(trimmed):
        return trimmed
    digits = re.sub(r"\D", "", trimmed)
    if len(digits) == 10:
        return f"+1{digits}"
    if 11 <= len(digits) <= 15:
        return f"+{digits}"
    return None


# ── Call outcomes ───────────────────────────────────────────────────

_CONFIRM_RE = re.compile(
    r"\b(confirmed|confirm that|booked (?:you|it|in|for)|you['’]?re booked|all set|"
    r"see you (?:then|at|on|tomorrow)|got you down|have you down|put you down|"
    r"pencil(?:led|ed)? you in|reserved|scheduled you)\b",
    re.IGNORECASE,
)
_DECLINE_RE = re.compile(
    r"\b(no availability|not available|fully booked|no openings?|"
    r"can(?:no|['’])t (?:book|fit|do)|unable to (?:book|schedule)|"
    r"could(?:n['’]| no)t (?:book|schedule)|call (?:you )?back|not booked)\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")
_FAILED_ENDINGS = {"no-answer", "busy", "failed", "customer-did-not-answer", "customer-busy"}


@dataclass(frozen=True)
class CallOutcome:
    confirmed: bool
    reason: str
    time: ClockTime | None = None


def validate_call(ended_reason: str | None, transcript: str, target: str) -> str | None:
    """Return a failure message if the call never really happened."""
    text = (transcript or "").strip()
    if ended_reason in _FAILED_ENDINGS:
        return f"The number {target} did not answer or the call failed."
    if ended_reason == "customer-ended-call" and len(text) < 20:
        return f"The number {target} got disconnected before completing the booking."
    if len(text) < 10:
        return f"The number {target} did not answer or got disconnected."
    return None


def analyze_call_outcome(transcript: str) -> CallOutcome:
    """Decide whether a call transcript ends in a confirmed booking.

    The last confirming or declining sentence wins.  The confirmed time is
    the last time stated in a confirming sentence, if any.
    """
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(transcript or "") if s.strip()]
    last_confirm = last_decline = -1
    for i, sentence in enumerate(sentences):
        if _CONFIRM_RE.search(sentence):
            last_confirm = i
        if _DECLINE_RE.search(sentence):
            last_decline = i

    if last_confirm < 0:
        return CallOutcome(False, "The call ended without the appointment being confirmed.")
    if last_decline > last_confirm:
        return CallOutcome(False, "The business could not confirm the appointment.")

    confirmed_time = None
    for sentence in reversed(sentences[: last_confirm + 1]):
        if not _CONFIRM_RE.search(sentence):
            continue
        times = find_clock_times(sentence)
        if times:
            confirmed_time = times[-1]
            break
    return CallOutcome(True, "Appointment confirmed on the call.", confirmed_time)
