"""Domain layer for conti.

Services live in their own modules (balance, repository, summary); they
depend on conti.database, which itself imports the entities defined here.
"""

from conti.domain.entities import (
    Account,
    AccountKind,
    AccountSource,
    PaymentFrequency,
    Subscription,
    Transaction,
)
from conti.domain.errors import (
    ConcurrencyConflictError,
    DomainError,
    NotFoundError,
    StoreUnavailableError,
    UnauthenticatedError,
    ValidationError,
)

__all__ = [
    "Account",
    "AccountKind",
    "AccountSource",
    "PaymentFrequency",
    "Subscription",
    "Transaction",
    "ConcurrencyConflictError",
    "DomainError",
    "NotFoundError",
    "StoreUnavailableError",
    "UnauthenticatedError",
    "ValidationError",
]
