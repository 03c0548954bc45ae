"""Utility functions for conti."""

from conti.utils.date_parser import parse_date
from conti.utils.amount_parser import parse_amount

__all__ = ["parse_date", "parse_amount"]
