"""Repository façade over one store and the balance engine.

Every caller goes through a Repository. Reads are passed through to the
store; writes are validated first and composite writes are routed through
the store's guarded primitives, so a failure never leaves a half-applied
change behind.
"""

from dataclasses import replace
from datetime import date, datetime, timedelta, UTC
from decimal import Decimal
from typing import Callable, Optional

from conti.database.base import Store
from conti.database.filters import SubscriptionFilter, TransactionFilter
from conti.database.live import LiveQuery
from conti.domain.balance import BalanceEngine
from conti.domain.entities import (
    Account,
    AccountSource,
    EntityId,
    Subscription,
    Transaction,
)
from conti.domain.errors import (
    NotFoundError,
    ValidationError,
    account_not_found,
    subscription_not_found,
)
from conti.domain.validation import (
    normalize_iban,
    validate_account,
    validate_subscription,
    validate_transaction,
)
from conti.logging_config import get_logger

logger = get_logger(__name__)

EXPIRING_WITHIN_DAYS = 7


def utcnow() -> datetime:
    return datetime.now(UTC)


class Repository:
    """Single entry point for account, transaction and subscription data."""

    def __init__(
        self,
        store: Store,
        balance_engine: Optional[BalanceEngine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize repository.

        Args:
            store: Store instance
            balance_engine: Balance engine; one over the same store by default
            clock: Source of last-updated timestamps
        """
        self.store = store
        self.balance_engine = balance_engine or BalanceEngine(store)
        self.clock = clock

    async def initialize(self) -> None:
        """Prepare the underlying store for use."""
        await self.store.initialize_schema()

    async def close(self) -> None:
        await self.store.close()

    # Helpers
    async def _require_account(self, account_id: EntityId) -> Account:
        account = await self.store.get_account(account_id)
        if account is None:
            raise ValidationError(account_not_found(account_id))
        return account

    async def _check_transactions(self, transactions: list[Transaction]) -> None:
        """Validate transactions and their references before any write."""
        self.store.require_owner()
        known_accounts: set[EntityId] = set()
        known_subscriptions: set[EntityId] = set()
        for transaction in transactions:
            validate_transaction(transaction)
            if transaction.account_id not in known_accounts:
                await self._require_account(transaction.account_id)
                known_accounts.add(transaction.account_id)
            if transaction.is_recurring and transaction.subscription_id not in known_subscriptions:
                if await self.store.get_subscription(transaction.subscription_id) is None:
                    raise ValidationError(subscription_not_found(transaction.subscription_id))
                known_subscriptions.add(transaction.subscription_id)

    # Account operations
    async def create_account(self, account: Account) -> EntityId:
        """Create an account. Its cached balance starts at the opening balance.

        Raises:
            ValidationError: If the account is malformed
        """
        self.store.require_owner()
        validate_account(account)
        if account.iban is not None:
            account = replace(account, iban=normalize_iban(account.iban))
        account = replace(account, balance=account.opening_balance, last_updated=self.clock())
        account_id = await self.store.insert_account(account)
        logger.info(f"Created account {account_id} ({account.name})")
        return account_id

    async def update_account(self, account: Account) -> None:
        """Update account metadata.

        Raises:
            ValidationError: If the account is malformed
            NotFoundError: If the account does not exist
        """
        self.store.require_owner()
        validate_account(account)
        if account.iban is not None:
            account = replace(account, iban=normalize_iban(account.iban))
        await self.store.update_account(replace(account, last_updated=self.clock()))

    async def touch_account(self, account_id: EntityId) -> None:
        """Mark an account as updated now.

        Raises:
            NotFoundError: If the account does not exist
        """
        await self.store.stamp_account(account_id, self.clock())

    async def delete_account(self, account_id: EntityId) -> None:
        """Delete an account together with its transactions and subscriptions.

        Raises:
            NotFoundError: If the account does not exist
        """
        await self.store.delete_account(account_id)
        logger.info(f"Deleted account {account_id} with its transactions and subscriptions")

    async def get_account(self, account_id: EntityId) -> Optional[Account]:
        return await self.store.get_account(account_id)

    def observe_accounts(self, source: Optional[AccountSource] = None) -> LiveQuery[list[Account]]:
        return self.store.observe_accounts(source)

    async def list_accounts(self, source: Optional[AccountSource] = None) -> list[Account]:
        return await self.store.observe_accounts(source).first()

    async def has_accounts(self) -> bool:
        """Check whether the owner has at least one account."""
        return bool(await self.list_accounts())

    # Balance operations
    def observe_balance(self, account_id: EntityId) -> LiveQuery[Decimal]:
        return self.balance_engine.observe_balance(account_id)

    async def get_balance(self, account_id: EntityId) -> Decimal:
        return await self.balance_engine.get_balance(account_id)

    def observe_balance_as_of(self, account_id: EntityId, as_of: date) -> LiveQuery[Decimal]:
        return self.balance_engine.observe_balance_as_of(account_id, as_of)

    async def get_balance_as_of(self, account_id: EntityId, as_of: date) -> Decimal:
        return await self.balance_engine.get_balance_as_of(account_id, as_of)

    # Transaction operations
    async def record_transaction(self, transaction: Transaction) -> EntityId:
        """Insert a transaction and add its amount to the account's cached balance.

        The balance is adjusted against its current stored value under the
        store's guarded read-modify-write, together with the insert.

        Raises:
            ValidationError: If the transaction or one of its references is invalid
            ConcurrencyConflictError: If the balance kept changing underneath
        """
        await self._check_transactions([transaction])
        ids = await self.store.record_transactions([transaction], self.clock())
        logger.info(f"Recorded transaction {ids[0]} of {transaction.amount} on account {transaction.account_id}")
        return ids[0]

    async def import_transactions(self, account_id: EntityId, transactions: list[Transaction]) -> list[EntityId]:
        """Append many transactions to an account, adjusting its balance once.

        Raises:
            ValidationError: If a transaction is invalid or belongs to another account
        """
        self._check_same_account(account_id, transactions)
        await self._check_transactions(transactions)
        if not transactions:
            await self._require_account(account_id)
            return []
        ids = await self.store.record_transactions(transactions, self.clock())
        logger.info(f"Imported {len(ids)} transactions into account {account_id}")
        return ids

    async def insert_transaction(self, transaction: Transaction) -> EntityId:
        """Insert a transaction without touching the cached balance."""
        await self._check_transactions([transaction])
        return await self.store.insert_transaction(transaction)

    async def insert_transactions(self, transactions: list[Transaction]) -> list[EntityId]:
        """Insert many transactions without touching cached balances."""
        await self._check_transactions(transactions)
        return await self.store.insert_transactions(transactions)

    async def update_transaction(self, transaction: Transaction) -> None:
        """Replace a transaction, moving cached balances by the difference.

        Raises:
            ValidationError: If the new version is invalid
            NotFoundError: If the transaction does not exist
        """
        if transaction.id is None:
            raise ValidationError("Transaction to update has no id")
        await self._check_transactions([transaction])
        previous = await self.store.revise_transaction(transaction, self.clock())
        logger.info(
            f"Updated transaction {transaction.id}: {previous.amount} -> {transaction.amount}"
        )

    async def delete_transaction(self, transaction_id: EntityId) -> Transaction:
        """Delete a transaction and subtract its amount from the cached balance.

        Returns:
            The deleted transaction

        Raises:
            NotFoundError: If the transaction does not exist; nothing is changed
        """
        removed = await self.store.remove_transaction(transaction_id, self.clock())
        logger.info(f"Deleted transaction {transaction_id} of {removed.amount} on account {removed.account_id}")
        return removed

    async def delete_transactions_for_account(self, account_id: EntityId) -> int:
        """Delete every transaction of an account.

        The account is stamped and its cached balance reset to the opening
        balance in the same atomic unit as the deletes.

        Returns:
            Number of transactions the account held

        Raises:
            NotFoundError: If the account does not exist
        """
        count = await self.store.observe_transaction_count(account_id).first()
        await self.replace_transactions_for_account(account_id, [])
        return count

    async def replace_transactions_for_account(
        self, account_id: EntityId, transactions: list[Transaction]
    ) -> list[EntityId]:
        """Replace all transactions of an account with a new set.

        Old transactions are deleted, the new ones inserted, the account
        stamped and its cached balance reset to the opening balance plus the
        new total. Replaying the same set gives the same result.

        Raises:
            ValidationError: If a transaction is invalid or belongs to another account
            NotFoundError: If the account does not exist
        """
        self._check_same_account(account_id, transactions)
        self.store.require_owner()
        if await self.store.get_account(account_id) is None:
            raise NotFoundError(account_not_found(account_id))
        await self._check_transactions(transactions)
        ids = await self.store.replace_transactions_for_account(account_id, transactions, self.clock())
        logger.info(f"Replaced transactions of account {account_id} with {len(ids)} new ones")
        return ids

    @staticmethod
    def _check_same_account(account_id: EntityId, transactions: list[Transaction]) -> None:
        for transaction in transactions:
            if transaction.account_id != account_id:
                raise ValidationError(
                    f"Transaction for account {transaction.account_id} cannot be added to account {account_id}"
                )

    async def get_transaction(self, transaction_id: EntityId) -> Optional[Transaction]:
        return await self.store.get_transaction(transaction_id)

    def observe_transactions(self, filters: Optional[TransactionFilter] = None) -> LiveQuery[list[Transaction]]:
        """Live list of transactions matching the filter, most recent first."""
        return self.store.observe_transactions(filters)

    async def list_transactions(self, filters: Optional[TransactionFilter] = None) -> list[Transaction]:
        return await self.store.list_transactions(filters)

    def observe_account_transactions(self, account_id: EntityId) -> LiveQuery[list[Transaction]]:
        return self.store.observe_transactions(TransactionFilter(account_id=account_id))

    def observe_transactions_in_range(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[list[Transaction]]:
        """Live list of transactions dated within [start_date, end_date]."""
        return self.store.observe_transactions(
            TransactionFilter(account_id=account_id, start_date=start_date, end_date=end_date)
        )

    def observe_transactions_by_category(self, category: str) -> LiveQuery[list[Transaction]]:
        return self.store.observe_transactions(TransactionFilter(category=category))

    def observe_recurring_transactions(self) -> LiveQuery[list[Transaction]]:
        return self.store.observe_transactions(TransactionFilter(recurring=True))

    def observe_subscription_transactions(self, subscription_id: EntityId) -> LiveQuery[list[Transaction]]:
        return self.store.observe_transactions(TransactionFilter(subscription_id=subscription_id))

    def observe_categories(self) -> LiveQuery[list[str]]:
        return self.store.observe_categories()

    def observe_category_count(self) -> LiveQuery[int]:
        return self.store.observe_category_count()

    def observe_transaction_count(self, account_id: EntityId) -> LiveQuery[int]:
        return self.store.observe_transaction_count(account_id)

    def observe_transaction_sum(self, account_id: EntityId, until: Optional[date] = None) -> LiveQuery[Decimal]:
        return self.store.observe_transaction_sum(account_id, until)

    def observe_income_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[Decimal]:
        return self.store.observe_income_total(start_date, end_date, account_id)

    def observe_expense_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[Decimal]:
        return self.store.observe_expense_total(start_date, end_date, account_id)

    # Subscription operations
    async def create_subscription(self, subscription: Subscription) -> EntityId:
        """Create a subscription.

        Raises:
            ValidationError: If the subscription is malformed or its account is missing
        """
        self.store.require_owner()
        validate_subscription(subscription)
        await self._require_account(subscription.account_id)
        subscription_id = await self.store.insert_subscription(subscription)
        logger.info(f"Created subscription {subscription_id} ({subscription.name})")
        return subscription_id

    async def update_subscription(self, subscription: Subscription) -> None:
        """Replace a subscription's fields.

        Raises:
            ValidationError: If the subscription is malformed or its account is missing
            NotFoundError: If the subscription does not exist
        """
        self.store.require_owner()
        validate_subscription(subscription)
        await self._require_account(subscription.account_id)
        await self.store.update_subscription(subscription)

    async def _existing_subscription(self, subscription_id: EntityId) -> Subscription:
        subscription = await self.store.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError(subscription_not_found(subscription_id))
        return subscription

    async def deactivate_subscription(self, subscription_id: EntityId, end_date: Optional[date] = None) -> None:
        """End a subscription, keeping it and its transactions for history.

        Args:
            subscription_id: Subscription to end
            end_date: Last day of the subscription (default: today)

        Raises:
            NotFoundError: If the subscription does not exist
        """
        await self._existing_subscription(subscription_id)
        end_date = end_date or self.clock().date()
        await self.store.set_subscription_status(subscription_id, False, end_date)
        logger.info(f"Deactivated subscription {subscription_id} as of {end_date}")

    async def reactivate_subscription(self, subscription_id: EntityId) -> None:
        """Make an ended subscription active again, clearing its end date."""
        await self._existing_subscription(subscription_id)
        await self.store.set_subscription_status(subscription_id, True, None)
        logger.info(f"Reactivated subscription {subscription_id}")

    async def delete_subscription(self, subscription_id: EntityId) -> None:
        """Hard-delete a subscription. Transactions that reference it are kept."""
        await self.store.delete_subscription(subscription_id)
        logger.info(f"Deleted subscription {subscription_id}")

    async def process_subscription_renewal(self, subscription_id: EntityId, on: Optional[date] = None) -> EntityId:
        """Charge one period of a subscription and move its renewal date forward.

        Records an expense of the subscription amount on its account, linked
        to the subscription, and advances the next renewal by one period, all
        in one atomic unit. Concurrent renewals each charge their own period.

        Args:
            subscription_id: Subscription to renew
            on: Date of the charge (default: the due renewal date)

        Returns:
            ID of the recorded transaction

        Raises:
            NotFoundError: If the subscription does not exist
            ValidationError: If the subscription is not active
        """
        charge = await self.store.renew_subscription(subscription_id, on, self.clock())
        logger.info(f"Renewed subscription {subscription_id}: charged {charge.amount} on {charge.date}")
        return charge.id

    async def get_subscription(self, subscription_id: EntityId) -> Optional[Subscription]:
        return await self.store.get_subscription(subscription_id)

    def observe_subscriptions(self, filters: Optional[SubscriptionFilter] = None) -> LiveQuery[list[Subscription]]:
        """Live list of subscriptions, ordered per the filter."""
        return self.store.observe_subscriptions(filters)

    async def list_subscriptions(
        self, active: Optional[bool] = None, account_id: Optional[EntityId] = None
    ) -> list[Subscription]:
        """List subscriptions.

        All subscriptions are ordered by name, active ones by next renewal,
        ended ones by end date (most recent first), an account's active ones
        by name.
        """
        return await self.store.list_subscriptions(SubscriptionFilter(active=active, account_id=account_id))

    def observe_active_subscriptions(self) -> LiveQuery[list[Subscription]]:
        return self.store.observe_subscriptions(SubscriptionFilter(active=True))

    def observe_ended_subscriptions(self) -> LiveQuery[list[Subscription]]:
        return self.store.observe_subscriptions(SubscriptionFilter(active=False))

    def observe_account_subscriptions(self, account_id: EntityId) -> LiveQuery[list[Subscription]]:
        return self.store.observe_subscriptions(SubscriptionFilter(active=True, account_id=account_id))

    def observe_expiring_subscriptions(
        self, within_days: int = EXPIRING_WITHIN_DAYS, today: Optional[date] = None
    ) -> LiveQuery[list[Subscription]]:
        """Live list of active subscriptions renewing within the next days."""
        today = today or self.clock().date()
        return self.store.observe_subscriptions(
            SubscriptionFilter(active=True, renewal_from=today, renewal_until=today + timedelta(days=within_days))
        )
