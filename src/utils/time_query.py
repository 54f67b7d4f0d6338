"""Natural-language time expression parsing.

Turns phrases like "yesterday", "last 5 days", "10/05/2025" or
"Oct 1 to Oct 3" into a concrete local-time interval. Parsing never raises:
failures come back as ``valid=False`` with an ``error`` message.

Numeric dates other than ISO are read as month/day/year.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from dateutil import parser as date_parser

from config import get_config


SPECIFIC_DATE = "specific_date"
DATE_RANGE = "date_range"
RELATIVE_TIME = "relative_time"
INVALID = "invalid"

ONE_DAY = timedelta(days=1)
ONE_MS = timedelta(milliseconds=1)

# Phrases that mean "the most recent stuff", resolved to today
CONVERSATIONAL_RECENCY = (
    "last thing we talked about",
    "last thing we discussed",
    "most recent",
    "latest discussion",
    "latest",
    "recent conversation",
    "recent",
    "just now",
    "earlier",
    "before",
    "last conversation",
    "last time",
    "previous",
)

_RELATIVE_MARKERS = (
    "yesterday", "today", "tonight", "this morning", "this afternoon",
    "this evening", "last", "past", "ago",
) + CONVERSATIONAL_RECENCY

_RANGE_SPLIT = re.compile(r"\s+(?:to|until|through|and)\s+|\s+-\s+", re.IGNORECASE)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
# 10/05/2025, 10.05.2025, 10-05-2025 -> month/day/year
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})$")

_LAST_N_DAYS = re.compile(r"\b(?:last|past)\s+(\d+)\s+days?\b")
_LAST_N_WEEKS = re.compile(r"\b(?:last|past)\s+(\d+)\s+weeks?\b")
_N_DAYS_AGO = re.compile(r"\b(\d+)\s+days?\s+ago\b")
_TODAY_WORDS = re.compile(r"\b(?:today|tonight|this\s+(?:morning|afternoon|evening))\b")

# "may" and "mar" are also ordinary words; bare they only count inside a
# range, otherwise they need an ordinal, a year, "of" or a leading "on"
_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|march|apr(?:il)?|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_AMBIGUOUS_MONTH = r"(?:may|mar)"
_ANY_MONTH = rf"(?:{_MONTH}|{_AMBIGUOUS_MONTH})"
_DAY = r"\d{1,2}(?:st|nd|rd|th)?"
_ORDINAL_DAY = r"\d{1,2}(?:st|nd|rd|th)"
_YEAR = r",?\s+\d{4}"
_NUMERIC_TOKEN = r"\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[/.\-]\d{1,2}[/.\-]\d{4}"
_DATE_TOKEN = (
    rf"(?:{_NUMERIC_TOKEN}"
    rf"|{_MONTH}\.?\s+{_DAY}(?:{_YEAR})?"
    rf"|{_DAY}\s+(?:of\s+)?{_MONTH}(?:{_YEAR})?"
    rf"|{_AMBIGUOUS_MONTH}\.?\s+{_DAY}{_YEAR}"
    rf"|{_AMBIGUOUS_MONTH}\.?\s+{_ORDINAL_DAY}"
    rf"|{_ORDINAL_DAY}\s+(?:of\s+)?{_AMBIGUOUS_MONTH}"
    rf"|{_DAY}\s+of\s+{_AMBIGUOUS_MONTH}"
    rf"|{_DAY}\s+{_AMBIGUOUS_MONTH}{_YEAR})"
)
_LOOSE_DATE_TOKEN = (
    rf"(?:{_NUMERIC_TOKEN}"
    rf"|{_ANY_MONTH}\.?\s+{_DAY}(?:{_YEAR})?"
    rf"|{_DAY}\s+(?:of\s+)?{_ANY_MONTH}(?:{_YEAR})?)"
)

# Ordered most specific first; the first hit is the temporal reference
_TEMPORAL_PATTERNS = [
    re.compile(
        rf"\b(?:from\s+)?{_LOOSE_DATE_TOKEN}\s+(?:to|until|through|and|-)\s+{_LOOSE_DATE_TOKEN}\b",
        re.IGNORECASE
    ),
    re.compile(rf"\b(?:on\s+)?{_DATE_TOKEN}\b", re.IGNORECASE),
    re.compile(rf"\bon\s+{_LOOSE_DATE_TOKEN}\b", re.IGNORECASE),
    re.compile(r"\b(?:last|past)\s+\d+\s+(?:days?|weeks?)\b", re.IGNORECASE),
    re.compile(r"\b\d+\s+days?\s+ago\b", re.IGNORECASE),
    re.compile(r"\b(?:last|past)\s+(?:week|month)\b", re.IGNORECASE),
    re.compile(r"\b(?:yesterday|today|tonight)\b", re.IGNORECASE),
    re.compile(r"\bthis\s+(?:morning|afternoon|evening)\b", re.IGNORECASE),
]


@dataclass
class TimeQuery:
    """Result of parsing a time expression.

    Attributes:
        kind: specific_date, date_range, relative_time or invalid
        valid: False for unparseable input and for over-long spans
        start_date: Inclusive interval start (00:00 of the first day)
        end_date: Inclusive interval end (23:59:59.999 of the last day)
        day_count: Days covered; clamped to the maximum when too long
        error: Human-readable reason when valid is False
        moment: Exact time named by the expression, if it had one
    """
    kind: str
    valid: bool
    original_query: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    day_count: Optional[int] = None
    error: Optional[str] = None
    moment: Optional[datetime] = None

    @property
    def usable(self) -> bool:
        """True when an interval is available, even if it was clamped."""
        return self.start_date is not None and self.end_date is not None

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "isValid": self.valid,
            "originalQuery": self.original_query,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "dayCount": self.day_count,
            "error": self.error,
        }


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime) -> datetime:
    return start_of_day(value) + ONE_DAY - ONE_MS


def create_date_range(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """Expand two dates into a full-day inclusive interval."""
    return start_of_day(start), end_of_day(end)


def format_date(value: datetime) -> str:
    """Format as e.g. "October 5, 2025"."""
    return f"{value:%B} {value.day}, {value.year}"


def format_date_range(start: datetime, end: datetime) -> str:
    if is_same_day(start, end):
        return format_date(start)
    return f"{format_date(start)} to {format_date(end)}"


def is_same_day(a: datetime, b: datetime) -> bool:
    return a.date() == b.date()


def _invalid(query: str, error: str) -> TimeQuery:
    return TimeQuery(kind=INVALID, valid=False, original_query=query, error=error)


def _last_days(query: str, days: int, today: datetime, max_days: int, error: Optional[str] = None) -> TimeQuery:
    """Interval ending today and covering ``days`` calendar days, clamped."""
    if days > max_days:
        start = start_of_day(today) - (max_days - 1) * ONE_DAY
        return TimeQuery(
            kind=RELATIVE_TIME,
            valid=False,
            original_query=query,
            start_date=start,
            end_date=end_of_day(today),
            day_count=max_days,
            error=error or (
                f"Date range limited to {max_days} days maximum. "
                f"Using last {max_days} days instead."
            ),
        )
    start = start_of_day(today) - (days - 1) * ONE_DAY
    return TimeQuery(
        kind=RELATIVE_TIME,
        valid=True,
        original_query=query,
        start_date=start,
        end_date=end_of_day(today),
        day_count=days,
    )


def _single_day(query: str, day: datetime, kind: str, moment: Optional[datetime] = None) -> TimeQuery:
    return TimeQuery(
        kind=kind,
        valid=True,
        original_query=query,
        start_date=start_of_day(day),
        end_date=end_of_day(day),
        day_count=1,
        moment=moment,
    )


def parse_relative_time(query: str, now: Optional[datetime] = None, max_days: Optional[int] = None) -> TimeQuery:
    """Parse expressions relative to today ("yesterday", "last 3 days")."""
    now = now or datetime.now()
    max_days = max_days or get_config().max_date_range_days
    text = query.lower().strip()

    if "yesterday" in text:
        return _single_day(query, now - ONE_DAY, RELATIVE_TIME)

    if match := _N_DAYS_AGO.search(text):
        try:
            day = now - int(match.group(1)) * ONE_DAY
        except OverflowError:
            return _invalid(query, "Day offset out of range")
        return _single_day(query, day, RELATIVE_TIME)

    if match := _LAST_N_DAYS.search(text):
        days = int(match.group(1))
        if days < 1:
            return _invalid(query, "Day count must be at least 1")
        return _last_days(query, days, now, max_days)

    if match := _LAST_N_WEEKS.search(text):
        weeks = int(match.group(1))
        if weeks < 1:
            return _invalid(query, "Week count must be at least 1")
        return _last_days(query, weeks * 7, now, max_days)

    if re.search(r"\b(?:last|past)\s+week\b", text):
        return _last_days(query, 7, now, max_days)

    if re.search(r"\b(?:last|past)\s+month\b", text):
        return _last_days(
            query, 30, now, max_days,
            error=f"Month range too large. Limited to last {max_days} days."
        )

    if _TODAY_WORDS.search(text):
        return _single_day(query, now, RELATIVE_TIME)

    for phrase in CONVERSATIONAL_RECENCY:
        if phrase in text:
            return _single_day(query, now, RELATIVE_TIME)

    return _invalid(query, "Could not parse relative time expression")


def _parse_calendar_date(text: str, now: datetime) -> Optional[datetime]:
    """Parse one calendar date, returning the exact datetime or None."""
    text = text.strip().rstrip(".,")

    if match := _ISO_DATE.match(text):
        year, month, day = (int(g) for g in match.groups())
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    if match := _NUMERIC_DATE.match(text):
        month, day, year = (int(g) for g in match.groups())
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    # Bare numbers are too ambiguous for free-form parsing
    if not re.search(r"[a-zA-Z]", text):
        return None

    try:
        parsed = date_parser.parse(text, default=start_of_day(now), fuzzy=True)
    except (ValueError, OverflowError):
        return None

    if not (now.year - 10 <= parsed.year <= now.year + 10):
        return None
    return parsed


def parse_specific_date(query: str, now: Optional[datetime] = None) -> TimeQuery:
    """Parse a single date into a full-day interval."""
    now = now or datetime.now()
    parsed = _parse_calendar_date(query, now)
    if parsed is None:
        return _invalid(query, "Could not parse date format")

    moment = parsed if parsed != start_of_day(parsed) else None
    return _single_day(query, parsed, SPECIFIC_DATE, moment=moment)


def parse_date_range(query: str, now: Optional[datetime] = None, max_days: Optional[int] = None) -> TimeQuery:
    """Parse "<date> to <date>" style ranges.

    Over-long ranges come back invalid with the most recent ``max_days``
    days of the range as the clamped interval.
    """
    now = now or datetime.now()
    max_days = max_days or get_config().max_date_range_days

    text = re.sub(r"^\s*(?:from|between)\s+", "", query.strip(), flags=re.IGNORECASE)
    parts = _RANGE_SPLIT.split(text, maxsplit=1)
    if len(parts) != 2:
        return _invalid(query, "Invalid date range format")

    start = _parse_calendar_date(parts[0], now)
    end = _parse_calendar_date(parts[1], now)
    if start is None or end is None:
        return _invalid(query, "Invalid date format in range")

    start, end = create_date_range(start, end)
    if end < start:
        return _invalid(query, "End date is before start date")

    day_count = (start_of_day(end) - start).days + 1
    if day_count > max_days:
        return TimeQuery(
            kind=DATE_RANGE,
            valid=False,
            original_query=query,
            start_date=start_of_day(end) - (max_days - 1) * ONE_DAY,
            end_date=end,
            day_count=max_days,
            error=f"Date range limited to {max_days} days maximum",
        )

    return TimeQuery(
        kind=DATE_RANGE,
        valid=True,
        original_query=query,
        start_date=start,
        end_date=end,
        day_count=day_count,
    )


def parse_time_query(query: str, now: Optional[datetime] = None, max_days: Optional[int] = None) -> TimeQuery:
    """Parse any supported time expression.

    Args:
        query: Expression such as "yesterday", "last 5 days", "2025-10-05"
        now: Reference time (defaults to the current local time)
        max_days: Span cap (defaults to config.max_date_range_days)

    Returns:
        TimeQuery; never raises
    """
    if not query or not query.strip():
        return _invalid(query or "", "Empty time query")

    now = now or datetime.now()
    text = query.lower()

    try:
        if any(marker in text for marker in _RELATIVE_MARKERS):
            return parse_relative_time(query, now, max_days)

        if _RANGE_SPLIT.search(query):
            return parse_date_range(query, now, max_days)

        return parse_specific_date(query, now)
    except (OverflowError, ValueError) as e:
        return _invalid(query, f"Date out of range: {e}")


def find_temporal_reference(text: str) -> Optional[str]:
    """Extract the first time expression found in free text.

    Conversational recency phrases ("most recent", "last time") are not
    temporal references; only dates and calendar-relative phrases count.
    """
    if not text:
        return None
    for pattern in _TEMPORAL_PATTERNS:
        if match := pattern.search(text):
            found = re.sub(r"^(?:from|on)\s+", "", match.group(0).strip(), flags=re.IGNORECASE)
            return found
    return None


def resolve_window(
    query: str,
    include_hours: bool = False,
    now: Optional[datetime] = None,
    max_days: Optional[int] = None
) -> TimeQuery:
    """Parse and, at hour granularity, narrow a named time to its hour.

    Only single dates that carry a time of day ("Oct 5 3pm") narrow; all
    other expressions keep their day-granularity interval.
    """
    parsed = parse_time_query(query, now, max_days)
    if include_hours and parsed.valid and parsed.moment is not None:
        hour = parsed.moment.replace(minute=0, second=0, microsecond=0)
        parsed.start_date = hour
        parsed.end_date = hour + timedelta(hours=1) - ONE_MS
    return parsed
