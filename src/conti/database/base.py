"""Abstract store interface.

A Store is one physical backing store scoped to one owner. Reads come in two
shapes: point reads returning a value, and live reads returning a LiveQuery
that re-emits when the underlying rows change. The guarded operations at the
bottom of the interface are the store-native transactional primitives the
repository builds its composite operations on.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

# Import entities directly to avoid circular import through domain/__init__.py
from conti.domain.entities import (
    Account,
    AccountSource,
    EntityId,
    Subscription,
    Transaction,
)
from conti.domain.errors import UnauthenticatedError, owner_not_resolved
from conti.database.filters import SubscriptionFilter, TransactionFilter
from conti.database.live import LiveQuery


class Store(ABC):
    """Abstract store interface for conti."""

    def __init__(self, owner_id: Optional[str]):
        """Initialize the store.

        Args:
            owner_id: Resolved owner/session identifier; None when nobody is
                signed in, in which case every operation fails
        """
        self.owner_id = owner_id

    def require_owner(self) -> str:
        """Return the owner id or fail with UnauthenticatedError."""
        if not self.owner_id:
            raise UnauthenticatedError(owner_not_resolved())
        return self.owner_id

    @abstractmethod
    async def initialize_schema(self) -> None:
        """Prepare the store for use (create tables, indexes)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by this store."""
        pass

    # Account operations
    @abstractmethod
    async def insert_account(self, account: Account) -> EntityId:
        """Insert an account. Returns its new ID."""
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> None:
        """Replace an account's stored fields."""
        pass

    @abstractmethod
    async def delete_account(self, account_id: EntityId) -> None:
        """Delete an account with all of its transactions and subscriptions."""
        pass

    @abstractmethod
    async def get_account(self, account_id: EntityId) -> Optional[Account]:
        """Get account by ID."""
        pass

    @abstractmethod
    async def stamp_account(self, account_id: EntityId, when: datetime) -> None:
        """Set an account's last-updated timestamp."""
        pass

    @abstractmethod
    def observe_accounts(self, source: Optional[AccountSource] = None) -> LiveQuery[list[Account]]:
        """Live list of accounts ordered by name, optionally by source."""
        pass

    # Transaction operations
    async def insert_transaction(self, transaction: Transaction) -> EntityId:
        """Insert one transaction without touching balances. Returns its ID."""
        ids = await self.insert_transactions([transaction])
        return ids[0]

    @abstractmethod
    async def insert_transactions(self, transactions: list[Transaction]) -> list[EntityId]:
        """Insert many transactions without touching balances."""
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> None:
        """Replace a transaction's stored fields without touching balances."""
        pass

    @abstractmethod
    async def delete_transactions_for_account(self, account_id: EntityId) -> int:
        """Delete every transaction of an account. Returns the count removed."""
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: EntityId) -> Optional[Transaction]:
        """Get transaction by ID."""
        pass

    async def list_transactions(self, filters: Optional[TransactionFilter] = None) -> list[Transaction]:
        """One-shot list of transactions, most recent first."""
        return await self.observe_transactions(filters).first()

    @abstractmethod
    def observe_transactions(self, filters: Optional[TransactionFilter] = None) -> LiveQuery[list[Transaction]]:
        """Live list of transactions, most recent first."""
        pass

    @abstractmethod
    def observe_categories(self) -> LiveQuery[list[str]]:
        """Live list of distinct category labels, ascending."""
        pass

    @abstractmethod
    def observe_category_count(self) -> LiveQuery[int]:
        """Live count of distinct category labels."""
        pass

    @abstractmethod
    def observe_transaction_count(self, account_id: EntityId) -> LiveQuery[int]:
        """Live count of an account's transactions."""
        pass

    @abstractmethod
    def observe_transaction_sum(self, account_id: EntityId, until: Optional[date] = None) -> LiveQuery[Decimal]:
        """Live sum of an account's amounts, optionally for dates up to until."""
        pass

    @abstractmethod
    def observe_income_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[Decimal]:
        """Live sum of positive amounts dated within the range."""
        pass

    @abstractmethod
    def observe_expense_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[Decimal]:
        """Live sum of the absolute value of negative amounts within the range."""
        pass

    # Subscription operations
    @abstractmethod
    async def insert_subscription(self, subscription: Subscription) -> EntityId:
        """Insert a subscription. Returns its new ID."""
        pass

    @abstractmethod
    async def update_subscription(self, subscription: Subscription) -> None:
        """Replace a subscription's stored fields."""
        pass

    @abstractmethod
    async def delete_subscription(self, subscription_id: EntityId) -> None:
        """Hard-delete a subscription. Linked transactions are left alone."""
        pass

    @abstractmethod
    async def set_subscription_status(
        self, subscription_id: EntityId, active: bool, end_date: Optional[date]
    ) -> None:
        """Set the active flag and end date of a subscription."""
        pass

    @abstractmethod
    async def get_subscription(self, subscription_id: EntityId) -> Optional[Subscription]:
        """Get subscription by ID."""
        pass

    async def list_subscriptions(self, filters: Optional[SubscriptionFilter] = None) -> list[Subscription]:
        """One-shot list of subscriptions."""
        return await self.observe_subscriptions(filters).first()

    @abstractmethod
    def observe_subscriptions(self, filters: Optional[SubscriptionFilter] = None) -> LiveQuery[list[Subscription]]:
        """Live list of subscriptions, ordered per the filter."""
        pass

    # Guarded operations
    @abstractmethod
    async def record_transactions(self, transactions: list[Transaction], when: datetime) -> list[EntityId]:
        """Insert transactions and add their amounts to the owning accounts' balances.

        Each balance is read and rewritten under the store's guarded
        read-modify-write primitive, in the same atomic unit as the inserts.
        """
        pass

    @abstractmethod
    async def remove_transaction(self, transaction_id: EntityId, when: datetime) -> Transaction:
        """Subtract a transaction's amount from its account balance, then delete it.

        Raises:
            NotFoundError: If the transaction does not exist (nothing is changed)
        """
        pass

    @abstractmethod
    async def revise_transaction(self, transaction: Transaction, when: datetime) -> Transaction:
        """Replace a transaction and move balances by the difference.

        Returns:
            The transaction as it was before the replacement

        Raises:
            NotFoundError: If the transaction does not exist
        """
        pass

    @abstractmethod
    async def renew_subscription(
        self, subscription_id: EntityId, on: Optional[date], when: datetime
    ) -> Transaction:
        """Charge one period of a subscription and advance its renewal date.

        The charge is inserted, added to the account balance and the renewal
        date moved forward in one atomic unit, guarded like
        record_transactions. Concurrent renewals each charge a distinct period.

        Returns:
            The stored charge, with its ID

        Raises:
            NotFoundError: If the subscription does not exist
            ValidationError: If the subscription is not active or its account is missing
        """
        pass

    @abstractmethod
    async def replace_transactions_for_account(
        self, account_id: EntityId, transactions: list[Transaction], when: datetime
    ) -> list[EntityId]:
        """Swap an account's transactions for a new set.

        Deletes all existing transactions, inserts the new ones, stamps the
        account and resets its cached balance to opening balance plus the
        new total. Readers see either the old set or the new one.
        """
        pass
