"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic, so the relational schema can
change without touching the domain entities.
"""

from datetime import datetime, UTC
from decimal import Decimal
from typing import Any, Optional

from conti.domain import entities as domain
from conti.database.models import (
    Account as ORMAccount,
    Subscription as ORMSubscription,
    Transaction as ORMTransaction,
)


def to_money(value: Any) -> Decimal:
    """Convert a stored or aggregated amount to a cent-rounded Decimal."""
    if value is None:
        return Decimal("0.00")
    return domain.to_cents(Decimal(str(value)))


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored timestamps are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def account_to_domain(orm_account: ORMAccount) -> domain.Account:
    """Convert SQLAlchemy Account model to domain Account entity."""
    return domain.Account(
        id=orm_account.id,
        name=orm_account.name,
        kind=domain.AccountKind(orm_account.kind),
        opening_balance=to_money(orm_account.saldo_iniziale),
        balance=to_money(orm_account.balance),
        currency=orm_account.currency,
        iban=orm_account.iban,
        institution=orm_account.institution,
        source=domain.AccountSource(orm_account.source_flag),
        last_updated=_aware(orm_account.last_updated),
    )


def account_to_orm(account: domain.Account, owner_id: str) -> ORMAccount:
    """Build a new SQLAlchemy Account row from a domain Account."""
    opening = account.opening_balance
    return ORMAccount(
        owner_id=owner_id,
        name=account.name,
        kind=account.kind.value,
        saldo_iniziale=opening,
        balance=account.balance if account.balance is not None else opening,
        currency=account.currency,
        iban=account.iban,
        institution=account.institution,
        source_flag=account.source.value,
        last_updated=account.last_updated,
    )


def transaction_to_domain(orm_transaction: ORMTransaction) -> domain.Transaction:
    """Convert SQLAlchemy Transaction model to domain Transaction entity."""
    return domain.Transaction(
        id=orm_transaction.id,
        account_id=orm_transaction.account_id,
        date=orm_transaction.date,
        description=orm_transaction.description,
        amount=to_money(orm_transaction.amount),
        category=orm_transaction.category,
        notes=orm_transaction.notes,
        is_recurring=orm_transaction.is_recurring,
        subscription_id=orm_transaction.subscription_id,
        inserted_at=_aware(orm_transaction.inserted_at),
    )


def transaction_to_orm(transaction: domain.Transaction, owner_id: str) -> ORMTransaction:
    """Build a new SQLAlchemy Transaction row from a domain Transaction."""
    return ORMTransaction(
        owner_id=owner_id,
        account_id=transaction.account_id,
        date=transaction.date,
        description=transaction.description,
        amount=transaction.amount,
        category=transaction.category,
        notes=transaction.notes,
        is_recurring=transaction.is_recurring,
        subscription_id=transaction.subscription_id,
        inserted_at=transaction.inserted_at or datetime.now(UTC),
    )


def copy_transaction_fields(transaction: domain.Transaction, row: ORMTransaction) -> None:
    """Overwrite a stored transaction with the fields of a domain one."""
    row.account_id = transaction.account_id
    row.date = transaction.date
    row.description = transaction.description
    row.amount = transaction.amount
    row.category = transaction.category
    row.notes = transaction.notes
    row.is_recurring = transaction.is_recurring
    row.subscription_id = transaction.subscription_id


def subscription_to_domain(orm_subscription: ORMSubscription) -> domain.Subscription:
    """Convert SQLAlchemy Subscription model to domain Subscription entity."""
    return domain.Subscription(
        id=orm_subscription.id,
        name=orm_subscription.name,
        description=orm_subscription.description,
        amount=to_money(orm_subscription.amount),
        frequency=domain.PaymentFrequency[orm_subscription.frequency],
        start_date=orm_subscription.start_date,
        next_renewal_date=orm_subscription.next_renewal_date,
        end_date=orm_subscription.end_date,
        account_id=orm_subscription.account_id,
        category=orm_subscription.category,
        active=orm_subscription.active,
        notes=orm_subscription.notes,
    )


def copy_subscription_fields(subscription: domain.Subscription, row: ORMSubscription) -> None:
    """Overwrite a stored subscription with the fields of a domain one."""
    row.account_id = subscription.account_id
    row.name = subscription.name
    row.description = subscription.description
    row.amount = subscription.amount
    row.frequency = subscription.frequency.name
    row.start_date = subscription.start_date
    row.next_renewal_date = subscription.next_renewal_date
    row.end_date = subscription.end_date
    row.category = subscription.category
    row.active = subscription.active
    row.notes = subscription.notes


def subscription_to_orm(subscription: domain.Subscription, owner_id: str) -> ORMSubscription:
    """Build a new SQLAlchemy Subscription row from a domain Subscription."""
    row = ORMSubscription(owner_id=owner_id)
    copy_subscription_fields(subscription, row)
    return row
