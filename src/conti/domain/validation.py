"""Write-boundary validation for domain entities.

Every check raises ValidationError before any store is touched.
"""

import re
from typing import Optional

from conti.domain.entities import Account, Subscription, Transaction
from conti.domain.errors import ValidationError

_IT_IBAN = re.compile(r"^IT\d{2}[A-Z]\d{10}[A-Z0-9]{12}$")
_GENERIC_IBAN = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]+$")
_CURRENCY = re.compile(r"^[A-Z]{3}$")


def normalize_iban(iban: str) -> str:
    """Strip spaces and upper-case an IBAN."""
    return iban.replace(" ", "").upper()


def is_valid_iban(iban: Optional[str]) -> bool:
    """Check IBAN syntax: country prefix, check digits and body.

    The checksum is not verified. Italian IBANs must also match the
    country-specific layout.
    """
    if not iban:
        return False
    clean = normalize_iban(iban)
    if len(clean) < 15 or len(clean) > 34:
        return False
    if clean.startswith("IT"):
        return _IT_IBAN.match(clean) is not None
    return _GENERIC_IBAN.match(clean) is not None


def validate_account(account: Account) -> None:
    """Validate an account before it is written."""
    if not account.name or not account.name.strip():
        raise ValidationError("Account name must not be empty")
    if not account.currency or not _CURRENCY.match(account.currency):
        raise ValidationError(f"Invalid currency code '{account.currency}'")
    if account.iban is not None and not is_valid_iban(account.iban):
        raise ValidationError(f"Invalid IBAN '{account.iban}'")
    if not account.opening_balance.is_finite():
        raise ValidationError("Opening balance must be a finite amount")


def validate_transaction(transaction: Transaction) -> None:
    """Validate a transaction's own fields.

    Referential checks (account and subscription exist) need the store and
    are done by the repository.
    """
    if transaction.account_id is None:
        raise ValidationError("Transaction must belong to an account")
    if transaction.amount is None or not transaction.amount.is_finite():
        raise ValidationError("Transaction amount must be a finite amount")
    if transaction.is_recurring and transaction.subscription_id is None:
        raise ValidationError("Recurring transaction must reference a subscription")
    if not transaction.is_recurring and transaction.subscription_id is not None:
        raise ValidationError("Only recurring transactions may reference a subscription")


def validate_subscription(subscription: Subscription) -> None:
    """Validate a subscription before it is written."""
    if not subscription.name or not subscription.name.strip():
        raise ValidationError("Subscription name must not be empty")
    if not subscription.amount.is_finite() or subscription.amount <= 0:
        raise ValidationError("Subscription amount must be a positive amount")
    if subscription.next_renewal_date < subscription.start_date:
        raise ValidationError("Next renewal date must not precede the start date")
    if subscription.active and subscription.end_date is not None:
        raise ValidationError("An active subscription cannot have an end date")
    if not subscription.active and subscription.end_date is None:
        raise ValidationError("An inactive subscription must have an end date")
