"""Date parsing utilities."""

from datetime import date, timedelta
from typing import Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from conti.domain.errors import ValidationError


def parse_date(date_str: str, today: Optional[date] = None) -> date:
    """Parse a date string into a date object.

    Supports:
    - ISO dates: "2024-01-15"
    - Day-first dates: "15/01/2024", "15-01-2024", "15 gen 2024" style text
      that dateutil understands
    - Relative dates: "today", "yesterday", "tomorrow", "oggi", "ieri", "domani"

    Raises:
        ValidationError: If date string cannot be parsed
    """
    text = date_str.strip().lower()
    today = today or date.today()

    relative = {
        "today": today,
        "oggi": today,
        "yesterday": today - timedelta(days=1),
        "ieri": today - timedelta(days=1),
        "tomorrow": today + timedelta(days=1),
        "domani": today + timedelta(days=1),
    }
    if text in relative:
        return relative[text]

    try:
        if len(text) == 10 and text[4] == "-":
            return date.fromisoformat(text)
        return date_parser.parse(text, dayfirst=True).date()
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Could not parse date '{date_str}': {e}") from e


def parse_month(month_str: str) -> tuple[int, int]:
    """Parse "YYYY-MM" (or "MM/YYYY") into a (year, month) pair."""
    text = month_str.strip()
    try:
        if "/" in text:
            month, year = text.split("/")
        else:
            year, month = text.split("-")
        year_number, month_number = int(year), int(month)
    except ValueError as e:
        raise ValidationError(f"Could not parse month '{month_str}' (expected YYYY-MM)") from e
    if not 1 <= month_number <= 12:
        raise ValidationError(f"Month out of range in '{month_str}'")
    return year_number, month_number


def get_date_range(period: str, today: Optional[date] = None) -> tuple[date, date]:
    """Get start and end dates for this-month, last-month, this-year or last-year.

    Periods that include today end today.

    Raises:
        ValidationError: If period string is not recognized
    """
    period = period.strip().lower()
    today = today or date.today()
    month_start = today.replace(day=1)
    year_start = today.replace(month=1, day=1)

    if period == "this-month":
        return month_start, today
    if period == "last-month":
        return month_start - relativedelta(months=1), month_start - timedelta(days=1)
    if period == "this-year":
        return year_start, today
    if period == "last-year":
        return year_start - relativedelta(years=1), year_start - timedelta(days=1)
    raise ValidationError(
        f"Unknown period: '{period}'. Supported periods: this-month, last-month, this-year, last-year"
    )
