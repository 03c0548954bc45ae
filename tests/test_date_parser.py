"""Tests for date parsing utilities."""

import pytest
from datetime import date

from conti.domain.errors import ValidationError
from conti.utils.date_parser import get_date_range, parse_date, parse_month

TODAY = date(2025, 3, 15)


def test_parse_iso_date():
    """Test parsing ISO dates."""
    assert parse_date("2024-01-15") == date(2024, 1, 15)


def test_parse_day_first():
    """Dates with slashes are read day first."""
    assert parse_date("05/01/2024") == date(2024, 1, 5)
    assert parse_date("15-01-2024") == date(2024, 1, 15)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("today", TODAY),
        ("oggi", TODAY),
        ("Yesterday", date(2025, 3, 14)),
        ("ieri", date(2025, 3, 14)),
        ("tomorrow", date(2025, 3, 16)),
        ("domani", date(2025, 3, 16)),
    ],
)
def test_parse_relative(text, expected):
    assert parse_date(text, today=TODAY) == expected


def test_parse_invalid_date():
    with pytest.raises(ValidationError):
        parse_date("not a date")
    with pytest.raises(ValidationError):
        parse_date("2024-02-30")


def test_parse_month():
    assert parse_month("2025-03") == (2025, 3)
    assert parse_month("11/2024") == (2024, 11)


def test_parse_month_invalid():
    with pytest.raises(ValidationError):
        parse_month("2025-13")
    with pytest.raises(ValidationError):
        parse_month("March")


def test_date_range_this_month():
    assert get_date_range("this-month", today=TODAY) == (date(2025, 3, 1), TODAY)


def test_date_range_last_month():
    assert get_date_range("last-month", today=TODAY) == (date(2025, 2, 1), date(2025, 2, 28))


def test_date_range_last_month_in_january():
    assert get_date_range("last-month", today=date(2025, 1, 10)) == (date(2024, 12, 1), date(2024, 12, 31))


def test_date_range_years():
    assert get_date_range("this-year", today=TODAY) == (date(2025, 1, 1), TODAY)
    assert get_date_range("last-year", today=TODAY) == (date(2024, 1, 1), date(2024, 12, 31))


def test_date_range_unknown_period():
    with pytest.raises(ValidationError, match="Unknown period"):
        get_date_range("next-decade")
