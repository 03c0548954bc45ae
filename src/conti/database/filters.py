"""Read filters shared by the store implementations."""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from conti.database.live import Change, RowKey
from conti.domain.entities import EntityId, Subscription, Transaction

TRANSACTIONS = "transactions"
ACCOUNTS = "accounts"
SUBSCRIPTIONS = "subscriptions"


@dataclass(frozen=True)
class TransactionFilter:
    """Transaction selection; unset fields do not filter.

    Date bounds are inclusive on both ends.
    """

    account_id: Optional[EntityId] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category: Optional[str] = None
    recurring: Optional[bool] = None
    subscription_id: Optional[EntityId] = None

    def matches(self, transaction: Transaction) -> bool:
        """Check whether a transaction is selected by this filter."""
        if self.account_id is not None and transaction.account_id != self.account_id:
            return False
        if self.start_date is not None and transaction.date < self.start_date:
            return False
        if self.end_date is not None and transaction.date > self.end_date:
            return False
        if self.category is not None and transaction.category != self.category:
            return False
        if self.recurring is not None and transaction.is_recurring != self.recurring:
            return False
        if self.subscription_id is not None and transaction.subscription_id != self.subscription_id:
            return False
        return True

    def touches(self, key: RowKey) -> bool:
        """Check whether a write to the given slice can change the selection.

        Only account and date are known for a write, so category, recurring
        and subscription filters are treated as matching.
        """
        if self.account_id is not None and key.account_id != self.account_id:
            return False
        if key.date is None:
            return True
        if self.start_date is not None and key.date < self.start_date:
            return False
        if self.end_date is not None and key.date > self.end_date:
            return False
        return True

    def is_affected_by(self, change: Change) -> bool:
        """Change predicate for live transaction queries."""
        if change.table != TRANSACTIONS:
            return False
        return any(self.touches(key) for key in change.rows)


@dataclass(frozen=True)
class SubscriptionFilter:
    """Subscription selection.

    Ordering depends on the selection: active subscriptions by next renewal
    date, ended ones by end date (most recent first), per-account active ones
    and unfiltered lists by name.
    """

    active: Optional[bool] = None
    account_id: Optional[EntityId] = None
    renewal_until: Optional[date] = None
    renewal_from: Optional[date] = None

    def matches(self, subscription: Subscription) -> bool:
        """Check whether a subscription is selected by this filter."""
        if self.active is not None and subscription.active != self.active:
            return False
        if self.account_id is not None and subscription.account_id != self.account_id:
            return False
        if self.renewal_until is not None and subscription.next_renewal_date > self.renewal_until:
            return False
        if self.renewal_from is not None and subscription.next_renewal_date < self.renewal_from:
            return False
        return True

    def sort(self, subscriptions: list[Subscription]) -> list[Subscription]:
        """Order subscriptions the way this selection is presented."""
        if self.active is True and self.account_id is None:
            return sorted(subscriptions, key=lambda s: (s.next_renewal_date, s.name.lower()))
        if self.active is False:
            return sorted(
                subscriptions, key=lambda s: (s.end_date or date.min, s.name.lower()), reverse=True
            )
        return sorted(subscriptions, key=lambda s: s.name.lower())

    def is_affected_by(self, change: Change) -> bool:
        """Change predicate for live subscription queries."""
        if change.table != SUBSCRIPTIONS:
            return False
        if self.account_id is None:
            return True
        return any(key.account_id == self.account_id for key in change.rows)


def sort_transactions(transactions: list[Transaction]) -> list[Transaction]:
    """Order transactions most recent first, newest insert first on ties."""
    return sorted(
        transactions,
        key=lambda t: (t.date, t.inserted_at.timestamp() if t.inserted_at else 0.0),
        reverse=True,
    )


def table_changed(table: str):
    """Change predicate matching any write to a table."""
    return lambda change: change.table == table
