"""Mapper functions between domain entities and Firestore document data.

Dates are stored as ISO ``YYYY-MM-DD`` strings so range queries compare
them lexicographically; amounts are stored as numbers and come back as
cent-rounded Decimals.
"""

from datetime import date, datetime, UTC
from decimal import Decimal
from typing import Any, Optional

from conti.domain import entities as domain


def _money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return domain.to_cents(Decimal(str(value)))


def _date_str(value: Optional[date]) -> Optional[str]:
    return None if value is None else value.isoformat()


def _parse_date(value: Optional[str]) -> Optional[date]:
    return None if value is None else date.fromisoformat(value)


def _timestamp(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def account_to_document(account: domain.Account) -> dict[str, Any]:
    """Document data for an account. A missing cached balance starts at the opening balance."""
    balance = account.balance if account.balance is not None else account.opening_balance
    return {
        "name": account.name,
        "kind": account.kind.value,
        "openingBalance": float(account.opening_balance),
        "balance": float(balance),
        "currency": account.currency,
        "iban": account.iban,
        "institution": account.institution,
        "source": account.source.value,
        "lastUpdated": account.last_updated,
    }


def account_from_document(doc_id: str, data: dict[str, Any]) -> domain.Account:
    return domain.Account(
        id=doc_id,
        name=data.get("name", ""),
        kind=domain.AccountKind.parse(data.get("kind") or "OTHER"),
        opening_balance=_money(data.get("openingBalance")),
        balance=_money(data.get("balance")),
        currency=data.get("currency", "EUR"),
        iban=data.get("iban"),
        institution=data.get("institution"),
        source=domain.AccountSource(data.get("source", domain.AccountSource.MANUAL.value)),
        last_updated=_timestamp(data.get("lastUpdated")),
    )


def transaction_to_document(transaction: domain.Transaction) -> dict[str, Any]:
    """Document data for a transaction."""
    return {
        "accountId": str(transaction.account_id),
        "date": _date_str(transaction.date),
        "description": transaction.description,
        "amount": float(transaction.amount),
        "type": "income" if transaction.is_income else "expense",
        "category": transaction.category,
        "notes": transaction.notes,
        "isRecurring": transaction.is_recurring,
        "subscriptionId": None if transaction.subscription_id is None else str(transaction.subscription_id),
        "createdAt": transaction.inserted_at or datetime.now(UTC),
    }


def transaction_from_document(doc_id: str, data: dict[str, Any]) -> domain.Transaction:
    return domain.Transaction(
        id=doc_id,
        account_id=data["accountId"],
        date=_parse_date(data["date"]),
        description=data.get("description", ""),
        amount=_money(data.get("amount")),
        category=data.get("category", ""),
        notes=data.get("notes"),
        is_recurring=bool(data.get("isRecurring", False)),
        subscription_id=data.get("subscriptionId"),
        inserted_at=_timestamp(data.get("createdAt")),
    )


def subscription_to_document(subscription: domain.Subscription) -> dict[str, Any]:
    """Document data for a subscription."""
    return {
        "accountId": str(subscription.account_id),
        "name": subscription.name,
        "description": subscription.description,
        "amount": float(subscription.amount),
        "frequency": subscription.frequency.name,
        "category": subscription.category,
        "startDate": _date_str(subscription.start_date),
        "nextRenewalDate": _date_str(subscription.next_renewal_date),
        "endDate": _date_str(subscription.end_date),
        "isActive": subscription.active,
        "notes": subscription.notes,
    }


def subscription_from_document(doc_id: str, data: dict[str, Any]) -> domain.Subscription:
    return domain.Subscription(
        id=doc_id,
        account_id=data["accountId"],
        name=data.get("name", ""),
        description=data.get("description"),
        amount=_money(data.get("amount")),
        frequency=domain.PaymentFrequency[data.get("frequency", "MONTHLY")],
        category=data.get("category", "Subscription"),
        start_date=_parse_date(data["startDate"]),
        next_renewal_date=_parse_date(data["nextRenewalDate"]),
        end_date=_parse_date(data.get("endDate")),
        active=bool(data.get("isActive", True)),
        notes=data.get("notes"),
    )
