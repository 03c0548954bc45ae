"""Amount parsing utilities."""

import re
from decimal import Decimal, InvalidOperation

from conti.domain.entities import to_cents
from conti.domain.errors import ValidationError


def parse_amount(amount_str: str) -> Decimal:
    """Parse an amount string into a cent-rounded Decimal.

    Handles Italian and international notations:
    - "12,99" and "1.234,56" (comma decimal separator)
    - "1234.56" and "1,234.56" (dot decimal separator)
    - "€ 12,99", "+10", "-25.50"
    - "(25.50)" (negative in parentheses)

    When both separators appear, the last one is the decimal separator.

    Raises:
        ValidationError: If amount string cannot be parsed
    """
    if not amount_str or not amount_str.strip():
        raise ValidationError("Empty amount string")

    cleaned = re.sub(r"[\s$€£¥+]", "", amount_str)

    is_negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        is_negative = True
        cleaned = cleaned[1:-1]
    if cleaned.startswith("-"):
        is_negative = not is_negative
        cleaned = cleaned[1:]

    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation as e:
        raise ValidationError(f"Could not parse amount '{amount_str}'") from e
    if not amount.is_finite():
        raise ValidationError(f"Could not parse amount '{amount_str}'")
    return to_cents(-amount if is_negative else amount)
