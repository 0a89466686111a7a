"""Tests for IST reminder time resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from lara.datetime_utils import (
    IST,
    describe_when,
    ensure_ist,
    format_ist,
    parse_time,
    personalize_reminder_text,
    resolve_weekday,
    to_absolute_timestamp,
)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


# ============================================================================
# Formatting
# ============================================================================


class TestFormatting:
    def test_naive_datetime_is_ist_wall_time(self):
        assert format_ist(datetime(2025, 1, 1, 8, 0)) == "2025-01-01T08:00:00+05:30"

    def test_aware_datetime_is_converted(self):
        utc_midnight = datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)
        assert format_ist(utc_midnight) == "2025-01-01T05:30:00+05:30"

    def test_microseconds_dropped(self):
        assert format_ist(datetime(2025, 1, 1, 8, 0, 0, 123456, tzinfo=IST)) == "2025-01-01T08:00:00+05:30"

    def test_ensure_ist_keeps_instant(self):
        original = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert ensure_ist(original) == original
        assert ensure_ist(original).utcoffset() == timedelta(hours=5, minutes=30)

    @pytest.mark.parametrize(
        ("when", "spoken"),
        [
            (datetime(2025, 1, 15, 17, 30, tzinfo=IST), "today at 5:30 pm"),
            (datetime(2025, 1, 16, 9, 0, tzinfo=IST), "tomorrow at 9 am"),
            (datetime(2025, 1, 17, 0, 15, tzinfo=IST), "on Friday 17 January at 12:15 am"),
            (datetime(2025, 1, 16, 6, 30, tzinfo=timezone.utc), "tomorrow at 12 pm"),
        ],
    )
    def test_describe_when(self, when, spoken):
        assert describe_when(when, datetime(2025, 1, 15, 10, 0, tzinfo=IST)) == spoken


# ============================================================================
# parse_time
# ============================================================================


class TestParseTime:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("5 pm", "17:00"),
            ("5:30 pm", "17:30"),
            ("at 9 a.m.", "09:00"),
            ("12 am", "00:00"),
            ("12 pm", "12:00"),
            ("17:45", "17:45"),
            ("tomorrow 6:15PM", "18:15"),
        ],
    )
    def test_recognised_times(self, text, expected):
        assert parse_time(text) == expected

    @pytest.mark.parametrize("text", [None, "", "tomorrow", "call my mom", "25:00"])
    def test_no_time(self, text):
        assert parse_time(text) is None


# ============================================================================
# resolve_weekday
# ============================================================================


class TestResolveWeekday:
    @pytest.mark.parametrize("name", WEEKDAYS)
    def test_always_within_next_seven_days(self, name, fixed_now):
        resolved = resolve_weekday(name, fixed_now)
        delta = (resolved - fixed_now.date()).days
        assert 1 <= delta <= 7
        assert resolved.strftime("%A").lower() == name

    def test_same_weekday_is_next_week(self, fixed_now):
        # fixed_now is a Wednesday
        assert resolve_weekday("Wednesday", fixed_now) == fixed_now.date() + timedelta(days=7)

    def test_next_friday(self, fixed_now):
        assert resolve_weekday("friday", fixed_now).isoformat() == "2025-01-17"

    def test_unknown_name(self, fixed_now):
        with pytest.raises(ValueError):
            resolve_weekday("someday", fixed_now)


# ============================================================================
# to_absolute_timestamp
# ============================================================================


class TestToAbsoluteTimestamp:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("call mom tomorrow", "2025-01-16T09:00:00+05:30"),
            ("take out the trash tonight", "2025-01-15T20:00:00+05:30"),
            ("walk the dog this evening", "2025-01-15T19:00:00+05:30"),
            ("water the plants this afternoon", "2025-01-15T15:00:00+05:30"),
            ("pay rent friday", "2025-01-17T09:00:00+05:30"),
        ],
    )
    def test_bare_phrase_defaults(self, text, expected, fixed_now):
        assert to_absolute_timestamp(text, now=fixed_now) == expected

    def test_explicit_time_in_text(self, fixed_now):
        assert to_absolute_timestamp("call mom at 5 pm", now=fixed_now) == "2025-01-15T17:00:00+05:30"

    def test_past_time_today_rolls_to_tomorrow(self, fixed_now):
        assert to_absolute_timestamp("stretch at 8 am", now=fixed_now) == "2025-01-16T08:00:00+05:30"

    def test_weekday_with_time(self, fixed_now):
        assert to_absolute_timestamp("team sync friday at 6 pm", now=fixed_now) == "2025-01-17T18:00:00+05:30"

    def test_explicit_time_argument_wins(self, fixed_now):
        result = to_absolute_timestamp(
            "remind me to call my mom tomorrow at 5:30 pm",
            "tomorrow 5:30 pm",
            now=fixed_now,
        )
        assert result == "2025-01-16T17:30:00+05:30"

    def test_no_time_defaults_to_one_hour(self, fixed_now):
        assert to_absolute_timestamp("call mom", now=fixed_now) == "2025-01-15T11:00:00+05:30"

    def test_always_uses_ist_offset(self, fixed_now):
        result = to_absolute_timestamp("call mom tomorrow at 7 am", now=fixed_now)
        assert result.endswith("+05:30")
        assert "Z" not in result


# ============================================================================
# personalize_reminder_text
# ============================================================================


class TestPersonalizeReminderText:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("remind me to call my mom", "Call your mom"),
            ("call my mom", "Call your mom"),
            ("add a reminder to pick up my kids", "Pick up your kids"),
            ("I'm meeting my friend", "You're meeting your friend"),
        ],
    )
    def test_rewrites(self, text, expected):
        assert personalize_reminder_text(text) == expected
