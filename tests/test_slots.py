"""Tests for alternative-slot generation and overlap arithmetic."""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from src.models import BusyWindow
from src.slots import (
    ALTERNATIVE_OFFSETS,
    elapsed,
    format_clock,
    format_window,
    generate_alternatives,
    is_available,
    overlaps,
    shift,
)

TZ = ZoneInfo("America/Vancouver")


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 10, 21, hour, minute, tzinfo=TZ)


class TestGenerateAlternatives:
    @pytest.mark.parametrize("duration", [15, 60, 90, 240])
    def test_three_windows_keep_duration(self, duration):
        start = _at(15)
        options = generate_alternatives(start, start + timedelta(minutes=duration), TZ)
        assert len(options) == 3
        for option in options:
            assert option.end - option.start == timedelta(minutes=duration)

    def test_anchored_one_hour_earlier_one_later_two_later(self):
        options = generate_alternatives(_at(15), _at(16), TZ)
        assert [o.start for o in options] == [_at(14), _at(16), _at(17)]
        assert [o.label for o in options] == [label for label, _ in ALTERNATIVE_OFFSETS]

    def test_never_returns_the_original_window(self):
        options = generate_alternatives(_at(15), _at(16), TZ)
        assert all(o.start != _at(15) for o in options)

    def test_display_uses_local_time(self):
        utc_start = _at(15).astimezone(ZoneInfo("UTC"))
        option = generate_alternatives(utc_start, utc_start + timedelta(hours=1), TZ)[0]
        assert "2:00 PM to 3:00 PM" in option.display


class TestDaylightSaving:
    # 2026-03-08 02:00 PST jumps to 03:00 PDT in Vancouver
    START = datetime(2026, 3, 8, 1, 30, tzinfo=TZ)
    END = datetime(2026, 3, 8, 3, 30, tzinfo=TZ)

    def test_elapsed_is_real_time(self):
        assert elapsed(self.START, self.END) == timedelta(hours=1)

    def test_alternatives_keep_real_duration_across_spring_forward(self):
        for option in generate_alternatives(self.START, self.END, TZ):
            assert elapsed(option.start, option.end) == timedelta(hours=1)

    def test_offsets_are_real_time(self):
        options = generate_alternatives(self.START, self.END, TZ)
        assert [elapsed(self.START, o.start) for o in options] == [offset for _, offset in ALTERNATIVE_OFFSETS]
        # 1:30 PST + 2h of real time is 4:30 PDT on the wall clock
        assert options[2].start.astimezone(TZ).hour == 4
        assert options[2].start.astimezone(TZ).minute == 30

    def test_shift_across_fall_back(self):
        # 2026-11-01 02:00 PDT falls back to 01:00 PST
        before = datetime(2026, 11, 1, 0, 30, tzinfo=TZ)
        later = shift(before, timedelta(hours=3))
        assert elapsed(before, later) == timedelta(hours=3)
        assert later.astimezone(TZ).hour == 2


class TestOverlaps:
    def test_intersecting_windows_overlap(self):
        assert overlaps(_at(15), _at(16), _at(15, 15), _at(16, 15))

    def test_back_to_back_windows_do_not_overlap(self):
        assert not overlaps(_at(15), _at(16), _at(16), _at(17))
        assert not overlaps(_at(16), _at(17), _at(15), _at(16))

    def test_containment_overlaps(self):
        assert overlaps(_at(9), _at(18), _at(12), _at(13))

    def test_disjoint_windows(self):
        assert not overlaps(_at(9), _at(10), _at(11), _at(12))


class TestIsAvailable:
    def test_free_when_busy_list_empty(self):
        assert is_available(BusyWindow(_at(14), _at(15)), [])

    def test_busy_window_blocks(self):
        busy = [BusyWindow(_at(14, 30), _at(15, 30))]
        assert not is_available(BusyWindow(_at(14), _at(15)), busy)

    def test_adjacent_busy_window_does_not_block(self):
        busy = [BusyWindow(_at(15), _at(16))]
        assert is_available(BusyWindow(_at(14), _at(15)), busy)


class TestFormatting:
    @pytest.mark.parametrize(
        ("hour", "minute", "expected"),
        [(20, 0, "8 PM"), (20, 30, "8:30 PM"), (0, 0, "12 AM"), (12, 0, "12 PM"), (9, 5, "9:05 AM")],
    )
    def test_format_clock(self, hour, minute, expected):
        assert format_clock(_at(hour, minute), TZ) == expected

    def test_format_window_same_day(self):
        assert format_window(_at(14), _at(15), TZ) == "Wed 21 Oct, 2:00 PM to 3:00 PM"
