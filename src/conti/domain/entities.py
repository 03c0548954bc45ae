"""Domain model entities for conti.

These are pure data classes representing the tracked records, independent of
the store that persists them. Identifiers are store-assigned: integers in the
relational store, document keys in the document store.
"""

from dataclasses import dataclass, replace
from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

EntityId = Union[int, str]

CENTS = Decimal("0.01")
DEFAULT_CURRENCY = "EUR"
DEFAULT_SUBSCRIPTION_CATEGORY = "Subscription"


def to_cents(value: Decimal) -> Decimal:
    """Round a monetary amount half-up to two decimal places."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


class AccountKind(str, Enum):
    """Kind of account."""

    PRIMARY_BANK = "PRIMARY_BANK"
    CARD_WALLET = "CARD_WALLET"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: str) -> "AccountKind":
        """Parse a kind name case-insensitively, falling back to OTHER."""
        for kind in cls:
            if kind.value.lower() == value.strip().lower():
                return kind
        return cls.OTHER


class AccountSource(str, Enum):
    """Where an account's transactions come from."""

    MANUAL = "MANUAL"
    IMPORTED = "IMPORTED"


class PaymentFrequency(Enum):
    """Subscription payment frequency, valued by its period in months."""

    MONTHLY = 1
    QUARTERLY = 3
    SEMIANNUAL = 6
    ANNUAL = 12

    @property
    def months(self) -> int:
        return self.value

    def next_renewal_after(self, renewal_date: date) -> date:
        """Return the renewal date one period after the given one."""
        return renewal_date + relativedelta(months=self.months)


@dataclass(frozen=True)
class Account:
    """Bank account domain entity."""

    name: str
    kind: AccountKind = AccountKind.OTHER
    opening_balance: Decimal = Decimal("0")
    balance: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    iban: Optional[str] = None
    institution: Optional[str] = None
    source: AccountSource = AccountSource.MANUAL
    last_updated: Optional[datetime] = None
    id: Optional[EntityId] = None

    @property
    def is_imported(self) -> bool:
        return self.source == AccountSource.IMPORTED


@dataclass(frozen=True)
class Transaction:
    """Transaction domain entity.

    Amounts are signed: positive is an inflow, negative an outflow.
    """

    account_id: EntityId
    date: date
    amount: Decimal
    description: str = ""
    category: str = ""
    notes: Optional[str] = None
    is_recurring: bool = False
    subscription_id: Optional[EntityId] = None
    inserted_at: Optional[datetime] = None
    id: Optional[EntityId] = None

    @property
    def is_income(self) -> bool:
        return self.amount > 0

    @property
    def is_expense(self) -> bool:
        return self.amount < 0


@dataclass(frozen=True)
class Subscription:
    """Recurring subscription domain entity."""

    name: str
    amount: Decimal
    frequency: PaymentFrequency
    start_date: date
    next_renewal_date: date
    account_id: EntityId
    description: Optional[str] = None
    end_date: Optional[date] = None
    category: str = DEFAULT_SUBSCRIPTION_CATEGORY
    active: bool = True
    notes: Optional[str] = None
    id: Optional[EntityId] = None

    @property
    def monthly_cost(self) -> Decimal:
        """Monthly-equivalent cost, rounded to cents."""
        return to_cents(self.amount / self.frequency.months)

    @property
    def annual_cost(self) -> Decimal:
        """Annual-equivalent cost, rounded to cents."""
        return to_cents(self.amount * 12 / self.frequency.months)

    def renewal_charge(self, on: Optional[date] = None) -> Transaction:
        """Expense for one period, linked to this subscription.

        Args:
            on: Date of the charge (default: the due renewal date)
        """
        return Transaction(
            account_id=self.account_id,
            date=on or self.next_renewal_date,
            amount=-self.amount,
            description=self.name,
            category=self.category,
            is_recurring=True,
            subscription_id=self.id,
        )

    def renewed(self) -> "Subscription":
        """This subscription with its renewal date moved one period forward."""
        return replace(self, next_renewal_date=self.frequency.next_renewal_after(self.next_renewal_date))


@dataclass(frozen=True)
class FrequencyBreakdown:
    """Active subscriptions grouped by payment frequency."""

    frequency: PaymentFrequency
    count: int
    total: Decimal


@dataclass(frozen=True)
class MonthSummary:
    """Income and expense totals for one calendar month."""

    year: int
    month: int
    income: Decimal
    expenses: Decimal

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses
