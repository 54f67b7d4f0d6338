"""Tests for time expression parsing."""

from datetime import datetime, timedelta

import pytest

from utils.time_query import (
    DATE_RANGE,
    INVALID,
    RELATIVE_TIME,
    SPECIFIC_DATE,
    create_date_range,
    find_temporal_reference,
    format_date,
    format_date_range,
    is_same_day,
    parse_date_range,
    parse_relative_time,
    parse_specific_date,
    parse_time_query,
    resolve_window,
)

NOW = datetime(2025, 10, 15, 14, 30)
FULL_DAY = timedelta(hours=24) - timedelta(milliseconds=1)


class TestRelativeTime:
    """Expressions relative to the current day."""

    def test_yesterday_is_previous_full_day(self):
        result = parse_time_query("yesterday", now=NOW)
        assert result.valid
        assert result.kind == RELATIVE_TIME
        assert result.start_date == datetime(2025, 10, 14)
        assert result.end_date - result.start_date == FULL_DAY
        assert result.day_count == 1

    def test_last_n_days_ends_today(self):
        result = parse_time_query("last 3 days", now=NOW)
        assert result.valid
        assert result.day_count == 3
        assert result.start_date == datetime(2025, 10, 13)
        assert result.end_date == datetime(2025, 10, 15) + FULL_DAY

    def test_last_15_days_is_clamped(self):
        """Over-long spans are invalid but carry a clamped interval."""
        result = parse_time_query("last 15 days", now=NOW)
        assert result.valid is False
        assert result.day_count == 10
        assert result.error
        assert result.usable
        assert result.start_date == datetime(2025, 10, 6)

    def test_past_n_days_synonym(self):
        assert parse_time_query("past 2 days", now=NOW).day_count == 2

    def test_last_week_is_seven_days(self):
        result = parse_time_query("last week", now=NOW)
        assert result.valid
        assert result.day_count == 7

    def test_last_two_weeks_is_clamped(self):
        result = parse_time_query("last 2 weeks", now=NOW)
        assert result.valid is False
        assert result.day_count == 10

    def test_last_month_is_clamped_with_message(self):
        result = parse_time_query("last month", now=NOW)
        assert result.valid is False
        assert result.day_count == 10
        assert "Month range too large" in result.error

    def test_days_ago(self):
        result = parse_time_query("3 days ago", now=NOW)
        assert result.valid
        assert result.start_date == datetime(2025, 10, 12)

    @pytest.mark.parametrize("text", ["1000000 days ago", "99999999999 days ago"])
    def test_huge_day_offset_is_invalid_not_an_error(self, text):
        result = parse_time_query(text, now=NOW)
        assert result.valid is False
        assert result.error
        assert not result.usable

    @pytest.mark.parametrize("phrase", ["today", "this morning", "tonight", "this evening"])
    def test_today_words(self, phrase):
        result = parse_time_query(phrase, now=NOW)
        assert result.valid
        assert result.start_date == datetime(2025, 10, 15)

    def test_conversational_recency_means_today(self):
        result = parse_relative_time("the most recent thing", now=NOW)
        assert result.valid
        assert is_same_day(result.start_date, NOW)

    def test_unknown_relative_expression_invalid(self):
        result = parse_relative_time("whenever", now=NOW)
        assert result.kind == INVALID
        assert result.valid is False
        assert result.error == "Could not parse relative time expression"


class TestSpecificDate:
    """Single calendar dates."""

    @pytest.mark.parametrize("text", ["2025-10-05", "10/05/2025", "October 5, 2025", "Oct 5th 2025"])
    def test_single_date_spans_full_day(self, text):
        result = parse_time_query(text, now=NOW)
        assert result.valid
        assert result.kind == SPECIFIC_DATE
        assert result.start_date == datetime(2025, 10, 5)
        assert result.end_date - result.start_date == FULL_DAY

    def test_numeric_dates_read_month_first(self):
        result = parse_specific_date("05/08/2025", now=NOW)
        assert result.start_date == datetime(2025, 5, 8)

    def test_impossible_date_invalid(self):
        result = parse_specific_date("2025-02-30", now=NOW)
        assert result.valid is False
        assert result.error == "Could not parse date format"

    def test_garbage_invalid(self):
        result = parse_time_query("purple elephant", now=NOW)
        assert result.valid is False
        assert result.start_date is None
        assert not result.usable

    def test_bare_number_rejected(self):
        assert parse_specific_date("12345", now=NOW).valid is False

    def test_empty_query_invalid(self):
        assert parse_time_query("   ", now=NOW).kind == INVALID

    def test_time_of_day_recorded_as_moment(self):
        result = parse_specific_date("October 5, 2025 3pm", now=NOW)
        assert result.valid
        assert result.moment == datetime(2025, 10, 5, 15, 0)


class TestDateRange:
    """Explicit "<date> to <date>" ranges."""

    def test_range_inclusive_days(self):
        result = parse_time_query("2025-10-01 to 2025-10-05", now=NOW)
        assert result.valid
        assert result.kind == DATE_RANGE
        assert result.day_count == 5
        assert result.start_date == datetime(2025, 10, 1)
        assert result.end_date == datetime(2025, 10, 5) + FULL_DAY

    def test_range_with_month_names(self):
        result = parse_date_range("from October 1 to October 3", now=NOW)
        assert result.valid
        assert result.day_count == 3

    def test_reversed_range_invalid(self):
        result = parse_date_range("2025-10-05 to 2025-10-01", now=NOW)
        assert result.valid is False
        assert result.error == "End date is before start date"

    def test_long_range_keeps_last_days(self):
        result = parse_date_range("2025-09-01 to 2025-09-30", now=NOW)
        assert result.valid is False
        assert result.day_count == 10
        assert result.start_date == datetime(2025, 9, 21)
        assert result.end_date == datetime(2025, 9, 30) + FULL_DAY

    def test_unparseable_half_invalid(self):
        assert parse_date_range("2025-10-01 to someday", now=NOW).valid is False


class TestResolveWindow:

    def test_hour_granularity_narrows_to_hour(self):
        result = resolve_window("October 5, 2025 3pm", include_hours=True, now=NOW)
        assert result.start_date == datetime(2025, 10, 5, 15)
        assert result.end_date == datetime(2025, 10, 5, 16) - timedelta(milliseconds=1)

    def test_hour_flag_ignored_without_time(self):
        result = resolve_window("yesterday", include_hours=True, now=NOW)
        assert result.start_date == datetime(2025, 10, 14)


class TestFindTemporalReference:
    """Extracting the time expression from a user message."""

    @pytest.mark.parametrize("message,expected", [
        ("What did we discuss about APIs yesterday?", "yesterday"),
        ("Summarize the last 3 days for me", "last 3 days"),
        ("what happened on 2025-10-05", "2025-10-05"),
        ("anything from October 1 to October 5?", "October 1 to October 5"),
        ("we talked about this last week", "last week"),
        ("what did I say this morning", "this morning"),
        ("topics from 4 days ago", "4 days ago"),
    ])
    def test_finds_reference(self, message, expected):
        assert find_temporal_reference(message) == expected

    def test_no_reference(self):
        assert find_temporal_reference("Tell me about the telescopes we discussed") is None

    @pytest.mark.parametrize("message,expected", [
        ("what did we cover on May 5", "May 5"),
        ("anything on the May 5th call?", "May 5th"),
        ("the notes from 5 of May", "5 of May"),
        ("what did we decide May 5, 2025", "May 5, 2025"),
        ("summarize May 1 to May 3", "May 1 to May 3"),
        ("what about Mar 3rd", "Mar 3rd"),
    ])
    def test_may_and_mar_with_an_anchor(self, message, expected):
        assert find_temporal_reference(message) == expected

    @pytest.mark.parametrize("message", [
        "Step 2 may fail if the disk is full, how do I fix it?",
        "Option 1 may be better for my telescope",
        "Version 3 may not support that flag",
        "Add 2 mar files to the build",
    ])
    def test_modal_may_is_not_a_date(self, message):
        assert find_temporal_reference(message) is None

    def test_recency_phrase_is_not_temporal(self):
        assert find_temporal_reference("what was the most recent topic") is None


class TestHelpers:

    def test_format_date(self):
        assert format_date(datetime(2025, 10, 5)) == "October 5, 2025"

    def test_format_date_range(self):
        start, end = create_date_range(datetime(2025, 10, 1), datetime(2025, 10, 5))
        assert format_date_range(start, end) == "October 1, 2025 to October 5, 2025"
        assert format_date_range(start, start) == "October 1, 2025"

    def test_create_date_range_full_days(self):
        start, end = create_date_range(datetime(2025, 10, 1, 9), datetime(2025, 10, 1, 17))
        assert start == datetime(2025, 10, 1)
        assert end - start == FULL_DAY
