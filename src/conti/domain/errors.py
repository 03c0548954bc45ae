"""Shared domain error messages and error types."""

from typing import Union

EntityId = Union[int, str]


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Malformed entity detected before any write; nothing was mutated."""


class NotFoundError(DomainError):
    """Referenced entity does not exist at read or delete time."""


class UnauthenticatedError(DomainError):
    """No resolved owner identity is available."""


class StoreUnavailableError(DomainError):
    """Transient I/O or connectivity failure. Safe to retry."""


class ConcurrencyConflictError(DomainError):
    """A guarded read-modify-write lost its race past the retry budget."""


def account_not_found(account_id: EntityId) -> str:
    """Return message for missing account."""
    return f"Account {account_id} not found"


def transaction_not_found(transaction_id: EntityId) -> str:
    """Return message for missing transaction."""
    return f"Transaction {transaction_id} not found"


def subscription_not_found(subscription_id: EntityId) -> str:
    """Return message for missing subscription."""
    return f"Subscription {subscription_id} not found"


def subscription_not_active(subscription_id: EntityId) -> str:
    """Return message when renewing an ended subscription."""
    return f"Subscription {subscription_id} is not active"


def owner_not_resolved() -> str:
    """Return message when no owner session is available."""
    return "No authenticated owner; sign in before accessing data"


def guarded_write_conflict(account_id: EntityId, attempts: int) -> str:
    """Return message when a balance adjustment keeps losing its race."""
    return (
        f"Balance of account {account_id} changed concurrently; "
        f"gave up after {attempts} attempts"
    )
