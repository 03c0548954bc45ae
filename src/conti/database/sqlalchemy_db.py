"""SQLAlchemy relational store implementation."""

from collections import defaultdict
from dataclasses import replace
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import delete, distinct, func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from conti.database.base import Store
from conti.database.filters import (
    ACCOUNTS,
    SUBSCRIPTIONS,
    TRANSACTIONS,
    SubscriptionFilter,
    TransactionFilter,
    table_changed,
)
from conti.database.live import Change, ChangeNotifier, ChangePredicate, LiveQuery, RowKey
from conti.database.models import (
    Account,
    Subscription,
    Transaction,
    create_schema,
    create_session_factory,
)
from conti.database.mappers import (
    account_to_domain,
    account_to_orm,
    copy_subscription_fields,
    copy_transaction_fields,
    subscription_to_domain,
    subscription_to_orm,
    to_money,
    transaction_to_domain,
    transaction_to_orm,
)
from conti.domain.entities import (
    Account as DomainAccount,
    AccountSource,
    EntityId,
    Subscription as DomainSubscription,
    Transaction as DomainTransaction,
)
from conti.domain.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
    account_not_found,
    guarded_write_conflict,
    subscription_not_active,
    subscription_not_found,
    transaction_not_found,
)
from conti.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_GUARDED_WRITE_ATTEMPTS = 5


def _keys(transactions: list[DomainTransaction]) -> tuple[RowKey, ...]:
    return tuple(RowKey(t.account_id, t.date) for t in transactions)


class SQLAlchemyStore(Store):
    """SQLAlchemy-based implementation of the Store interface."""

    def __init__(
        self,
        engine: AsyncEngine,
        owner_id: Optional[str],
        notifier: Optional[ChangeNotifier] = None,
        guarded_write_attempts: int = DEFAULT_GUARDED_WRITE_ATTEMPTS,
    ):
        """Initialize SQLAlchemy store.

        Args:
            engine: Async engine (e.g. 'sqlite+aiosqlite:///path/to.db'); may be
                shared with other stores
            owner_id: Resolved owner identifier
            notifier: Change notifier shared by every store on the same engine,
                so live queries see writes made through any of them
            guarded_write_attempts: Retry budget for guarded balance updates
        """
        super().__init__(owner_id)
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        self.notifier = notifier or ChangeNotifier()
        self.guarded_write_attempts = guarded_write_attempts

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Open a session in a transaction, translating driver errors."""
        self.require_owner()
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except StaleDataError as e:
            raise ConcurrencyConflictError(str(e)) from e
        except IntegrityError as e:
            raise ValidationError(f"Rejected by store constraints: {e.orig}") from e
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Store operation failed: {e.orig}")
            raise StoreUnavailableError(f"Store unavailable: {e.orig}") from e

    def _live(self, fetch: Callable[[], Awaitable[T]], predicate: ChangePredicate) -> LiveQuery[T]:
        return LiveQuery(fetch, self.notifier.watcher(predicate))

    async def _run_guarded(self, unit: Callable[[], Awaitable[T]], account_id: EntityId) -> T:
        """Run a unit of work, retrying it while it loses optimistic-lock races."""
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(ConcurrencyConflictError),
                stop=stop_after_attempt(self.guarded_write_attempts),
                wait=wait_exponential(multiplier=0.01, max=0.2),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            f"Retrying balance update of account {account_id} "
                            f"(attempt {attempt.retry_state.attempt_number})"
                        )
                    result = await unit()
        except ConcurrencyConflictError as e:
            raise ConcurrencyConflictError(
                guarded_write_conflict(account_id, self.guarded_write_attempts)
            ) from e
        return result

    async def _account_row(self, session: AsyncSession, account_id: EntityId) -> Optional[Account]:
        return await session.scalar(
            select(Account).where(Account.id == account_id, Account.owner_id == self.owner_id)
        )

    async def _transaction_row(self, session: AsyncSession, transaction_id: EntityId) -> Optional[Transaction]:
        return await session.scalar(
            select(Transaction).where(Transaction.id == transaction_id, Transaction.owner_id == self.owner_id)
        )

    async def _subscription_row(self, session: AsyncSession, subscription_id: EntityId) -> Optional[Subscription]:
        return await session.scalar(
            select(Subscription).where(
                Subscription.id == subscription_id, Subscription.owner_id == self.owner_id
            )
        )

    async def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        try:
            await create_schema(self.engine)
        except OperationalError as e:
            raise StoreUnavailableError(f"Could not create schema: {e.orig}") from e

    async def close(self) -> None:
        """Close pooled connections. The engine reconnects on next use."""
        await self.engine.dispose()

    # Account operations
    async def insert_account(self, account: DomainAccount) -> int:
        """Insert an account. Returns account ID."""
        async with self._session() as session:
            row = account_to_orm(account, self.owner_id)
            session.add(row)
            await session.flush()
            account_id = row.id
        self.notifier.publish(Change(ACCOUNTS, (RowKey(account_id),)))
        return account_id

    async def update_account(self, account: DomainAccount) -> None:
        """Update account metadata.

        A changed opening balance shifts the cached balance by the same
        difference; otherwise the cached balance is left to guarded writes.
        """
        async with self._session() as session:
            row = await self._account_row(session, account.id)
            if row is None:
                raise NotFoundError(account_not_found(account.id))
            opening_delta = account.opening_balance - to_money(row.saldo_iniziale)
            row.name = account.name
            row.kind = account.kind.value
            row.saldo_iniziale = account.opening_balance
            row.balance = to_money(row.balance) + opening_delta
            row.currency = account.currency
            row.iban = account.iban
            row.institution = account.institution
            row.source_flag = account.source.value
            row.last_updated = account.last_updated
        self.notifier.publish(Change(ACCOUNTS, (RowKey(account.id),)))

    async def delete_account(self, account_id: EntityId) -> None:
        """Delete an account; foreign keys cascade to its children."""
        async with self._session() as session:
            result = await session.execute(
                delete(Account)
                .where(Account.id == account_id, Account.owner_id == self.owner_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(account_not_found(account_id))
        key = (RowKey(account_id),)
        self.notifier.publish(Change(ACCOUNTS, key), Change(TRANSACTIONS, key), Change(SUBSCRIPTIONS, key))

    async def get_account(self, account_id: EntityId) -> Optional[DomainAccount]:
        """Get account by ID."""
        async with self._session() as session:
            row = await self._account_row(session, account_id)
            return None if row is None else account_to_domain(row)

    async def stamp_account(self, account_id: EntityId, when: datetime) -> None:
        """Set an account's last-updated timestamp."""
        async with self._session() as session:
            result = await session.execute(
                update(Account)
                .where(Account.id == account_id, Account.owner_id == self.owner_id)
                .values(last_updated=when, version=Account.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(account_not_found(account_id))
        self.notifier.publish(Change(ACCOUNTS, (RowKey(account_id),)))

    def observe_accounts(self, source: Optional[AccountSource] = None) -> LiveQuery[list[DomainAccount]]:
        """Live list of accounts ordered by name."""

        async def fetch() -> list[DomainAccount]:
            async with self._session() as session:
                stmt = select(Account).where(Account.owner_id == self.owner_id)
                if source is not None:
                    stmt = stmt.where(Account.source_flag == source.value)
                rows = await session.scalars(stmt.order_by(Account.name, Account.id))
                return [account_to_domain(row) for row in rows]

        return self._live(fetch, table_changed(ACCOUNTS))

    # Transaction operations
    async def insert_transactions(self, transactions: list[DomainTransaction]) -> list[int]:
        """Insert many transactions. Returns their IDs in input order."""
        if not transactions:
            return []
        async with self._session() as session:
            rows = [transaction_to_orm(t, self.owner_id) for t in transactions]
            session.add_all(rows)
            await session.flush()
            ids = [row.id for row in rows]
        self.notifier.publish(Change(TRANSACTIONS, _keys(transactions)))
        return ids

    async def update_transaction(self, transaction: DomainTransaction) -> None:
        """Replace a transaction's stored fields."""
        async with self._session() as session:
            row = await self._transaction_row(session, transaction.id)
            if row is None:
                raise NotFoundError(transaction_not_found(transaction.id))
            old_key = RowKey(row.account_id, row.date)
            copy_transaction_fields(transaction, row)
        self.notifier.publish(Change(TRANSACTIONS, (old_key, RowKey(transaction.account_id, transaction.date))))

    async def delete_transactions_for_account(self, account_id: EntityId) -> int:
        """Delete every transaction of an account."""
        async with self._session() as session:
            result = await session.execute(
                delete(Transaction)
                .where(Transaction.account_id == account_id, Transaction.owner_id == self.owner_id)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount
        self.notifier.publish(Change(TRANSACTIONS, (RowKey(account_id),)))
        return count

    async def get_transaction(self, transaction_id: EntityId) -> Optional[DomainTransaction]:
        """Get transaction by ID."""
        async with self._session() as session:
            row = await self._transaction_row(session, transaction_id)
            return None if row is None else transaction_to_domain(row)

    def observe_transactions(self, filters: Optional[TransactionFilter] = None) -> LiveQuery[list[DomainTransaction]]:
        """Live list of transactions, most recent first."""
        filters = filters or TransactionFilter()

        async def fetch() -> list[DomainTransaction]:
            async with self._session() as session:
                stmt = select(Transaction).where(Transaction.owner_id == self.owner_id)
                if filters.account_id is not None:
                    stmt = stmt.where(Transaction.account_id == filters.account_id)
                if filters.start_date is not None:
                    stmt = stmt.where(Transaction.date >= filters.start_date)
                if filters.end_date is not None:
                    stmt = stmt.where(Transaction.date <= filters.end_date)
                if filters.category is not None:
                    stmt = stmt.where(Transaction.category == filters.category)
                if filters.recurring is not None:
                    stmt = stmt.where(Transaction.is_recurring == filters.recurring)
                if filters.subscription_id is not None:
                    stmt = stmt.where(Transaction.subscription_id == filters.subscription_id)
                rows = await session.scalars(stmt.order_by(Transaction.date.desc(), Transaction.id.desc()))
                return [transaction_to_domain(row) for row in rows]

        return self._live(fetch, filters.is_affected_by)

    def observe_categories(self) -> LiveQuery[list[str]]:
        """Live list of distinct category labels, ascending."""

        async def fetch() -> list[str]:
            async with self._session() as session:
                rows = await session.scalars(
                    select(Transaction.category)
                    .distinct()
                    .where(Transaction.owner_id == self.owner_id)
                    .order_by(Transaction.category.asc())
                )
                return list(rows)

        return self._live(fetch, table_changed(TRANSACTIONS))

    def observe_category_count(self) -> LiveQuery[int]:
        """Live count of distinct category labels."""

        async def fetch() -> int:
            async with self._session() as session:
                count = await session.scalar(
                    select(func.count(distinct(Transaction.category))).where(
                        Transaction.owner_id == self.owner_id
                    )
                )
                return int(count or 0)

        return self._live(fetch, table_changed(TRANSACTIONS))

    def observe_transaction_count(self, account_id: EntityId) -> LiveQuery[int]:
        """Live count of an account's transactions."""

        async def fetch() -> int:
            async with self._session() as session:
                count = await session.scalar(
                    select(func.count(Transaction.id)).where(
                        Transaction.owner_id == self.owner_id, Transaction.account_id == account_id
                    )
                )
                return int(count or 0)

        return self._live(fetch, TransactionFilter(account_id=account_id).is_affected_by)

    def observe_transaction_sum(self, account_id: EntityId, until: Optional[date] = None) -> LiveQuery[Decimal]:
        """Live sum of an account's amounts, optionally bounded by date."""

        async def fetch() -> Decimal:
            async with self._session() as session:
                stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                    Transaction.owner_id == self.owner_id, Transaction.account_id == account_id
                )
                if until is not None:
                    stmt = stmt.where(Transaction.date <= until)
                return to_money(await session.scalar(stmt))

        return self._live(fetch, TransactionFilter(account_id=account_id, end_date=until).is_affected_by)

    def _range_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId], income: bool
    ) -> LiveQuery[Decimal]:
        async def fetch() -> Decimal:
            async with self._session() as session:
                if income:
                    stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(Transaction.amount > 0)
                else:
                    stmt = select(func.coalesce(func.sum(func.abs(Transaction.amount)), 0)).where(
                        Transaction.amount < 0
                    )
                stmt = stmt.where(
                    Transaction.owner_id == self.owner_id,
                    Transaction.date >= start_date,
                    Transaction.date <= end_date,
                )
                if account_id is not None:
                    stmt = stmt.where(Transaction.account_id == account_id)
                return to_money(await session.scalar(stmt))

        filters = TransactionFilter(account_id=account_id, start_date=start_date, end_date=end_date)
        return self._live(fetch, filters.is_affected_by)

    def observe_income_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[Decimal]:
        """Live sum of positive amounts within the date range."""
        return self._range_total(start_date, end_date, account_id, income=True)

    def observe_expense_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[Decimal]:
        """Live sum of absolute negative amounts within the date range."""
        return self._range_total(start_date, end_date, account_id, income=False)

    # Subscription operations
    async def insert_subscription(self, subscription: DomainSubscription) -> int:
        """Insert a subscription. Returns subscription ID."""
        async with self._session() as session:
            row = subscription_to_orm(subscription, self.owner_id)
            session.add(row)
            await session.flush()
            subscription_id = row.id
        self.notifier.publish(Change(SUBSCRIPTIONS, (RowKey(subscription.account_id),)))
        return subscription_id

    async def update_subscription(self, subscription: DomainSubscription) -> None:
        """Replace a subscription's stored fields."""
        async with self._session() as session:
            row = await self._subscription_row(session, subscription.id)
            if row is None:
                raise NotFoundError(subscription_not_found(subscription.id))
            old_account = row.account_id
            copy_subscription_fields(subscription, row)
        self.notifier.publish(
            Change(SUBSCRIPTIONS, (RowKey(old_account), RowKey(subscription.account_id)))
        )

    async def delete_subscription(self, subscription_id: EntityId) -> None:
        """Hard-delete a subscription."""
        async with self._session() as session:
            row = await self._subscription_row(session, subscription_id)
            if row is None:
                raise NotFoundError(subscription_not_found(subscription_id))
            account_id = row.account_id
            await session.delete(row)
        self.notifier.publish(Change(SUBSCRIPTIONS, (RowKey(account_id),)))

    async def set_subscription_status(
        self, subscription_id: EntityId, active: bool, end_date: Optional[date]
    ) -> None:
        """Set the active flag and end date of a subscription."""
        async with self._session() as session:
            row = await self._subscription_row(session, subscription_id)
            if row is None:
                raise NotFoundError(subscription_not_found(subscription_id))
            row.active = active
            row.end_date = end_date
            account_id = row.account_id
        self.notifier.publish(Change(SUBSCRIPTIONS, (RowKey(account_id),)))

    async def get_subscription(self, subscription_id: EntityId) -> Optional[DomainSubscription]:
        """Get subscription by ID."""
        async with self._session() as session:
            row = await self._subscription_row(session, subscription_id)
            return None if row is None else subscription_to_domain(row)

    def observe_subscriptions(
        self, filters: Optional[SubscriptionFilter] = None
    ) -> LiveQuery[list[DomainSubscription]]:
        """Live list of subscriptions, ordered per the filter."""
        filters = filters or SubscriptionFilter()

        async def fetch() -> list[DomainSubscription]:
            async with self._session() as session:
                stmt = select(Subscription).where(Subscription.owner_id == self.owner_id)
                if filters.active is not None:
                    stmt = stmt.where(Subscription.active == filters.active)
                if filters.account_id is not None:
                    stmt = stmt.where(Subscription.account_id == filters.account_id)
                if filters.renewal_until is not None:
                    stmt = stmt.where(Subscription.next_renewal_date <= filters.renewal_until)
                if filters.renewal_from is not None:
                    stmt = stmt.where(Subscription.next_renewal_date >= filters.renewal_from)
                rows = await session.scalars(stmt)
                return filters.sort([subscription_to_domain(row) for row in rows])

        return self._live(fetch, filters.is_affected_by)

    # Guarded operations
    async def record_transactions(self, transactions: list[DomainTransaction], when: datetime) -> list[int]:
        """Insert transactions and adjust balances in one database transaction."""
        if not transactions:
            return []
        totals: dict[EntityId, Decimal] = defaultdict(Decimal)
        for transaction in transactions:
            totals[transaction.account_id] += transaction.amount

        async def unit() -> list[int]:
            async with self._session() as session:
                for account_id, delta in totals.items():
                    account = await self._account_row(session, account_id)
                    if account is None:
                        raise ValidationError(account_not_found(account_id))
                    account.balance = to_money(account.balance) + delta
                    account.last_updated = when
                rows = [transaction_to_orm(t, self.owner_id) for t in transactions]
                session.add_all(rows)
                await session.flush()
                return [row.id for row in rows]

        ids = await self._run_guarded(unit, next(iter(totals)))
        self.notifier.publish(
            Change(TRANSACTIONS, _keys(transactions)),
            Change(ACCOUNTS, tuple(RowKey(account_id) for account_id in totals)),
        )
        return ids

    async def remove_transaction(self, transaction_id: EntityId, when: datetime) -> DomainTransaction:
        """Reverse a transaction's balance effect and delete it."""

        async def unit() -> DomainTransaction:
            async with self._session() as session:
                row = await self._transaction_row(session, transaction_id)
                if row is None:
                    raise NotFoundError(transaction_not_found(transaction_id))
                removed = transaction_to_domain(row)
                account = await self._account_row(session, removed.account_id)
                if account is not None:
                    account.balance = to_money(account.balance) - removed.amount
                    account.last_updated = when
                await session.delete(row)
                return removed

        removed = await self._run_guarded(unit, transaction_id)
        self.notifier.publish(
            Change(TRANSACTIONS, _keys([removed])),
            Change(ACCOUNTS, (RowKey(removed.account_id),)),
        )
        return removed

    async def revise_transaction(self, transaction: DomainTransaction, when: datetime) -> DomainTransaction:
        """Replace a transaction and move balances by the difference."""

        async def unit() -> DomainTransaction:
            async with self._session() as session:
                row = await self._transaction_row(session, transaction.id)
                if row is None:
                    raise NotFoundError(transaction_not_found(transaction.id))
                previous = transaction_to_domain(row)
                deltas: dict[EntityId, Decimal] = defaultdict(Decimal)
                deltas[previous.account_id] -= previous.amount
                deltas[transaction.account_id] += transaction.amount
                for account_id, delta in deltas.items():
                    account = await self._account_row(session, account_id)
                    if account is None:
                        raise ValidationError(account_not_found(account_id))
                    if delta:
                        account.balance = to_money(account.balance) + delta
                        account.last_updated = when
                copy_transaction_fields(transaction, row)
                return previous

        previous = await self._run_guarded(unit, transaction.account_id)
        self.notifier.publish(
            Change(TRANSACTIONS, _keys([previous, transaction])),
            Change(ACCOUNTS, (RowKey(previous.account_id), RowKey(transaction.account_id))),
        )
        return previous

    async def renew_subscription(
        self, subscription_id: EntityId, on: Optional[date], when: datetime
    ) -> DomainTransaction:
        """Charge one period and advance the renewal date in one database transaction."""

        async def unit() -> DomainTransaction:
            async with self._session() as session:
                row = await self._subscription_row(session, subscription_id)
                if row is None:
                    raise NotFoundError(subscription_not_found(subscription_id))
                subscription = subscription_to_domain(row)
                if not subscription.active:
                    raise ValidationError(subscription_not_active(subscription_id))
                charge = replace(subscription.renewal_charge(on), inserted_at=when)
                account = await self._account_row(session, charge.account_id)
                if account is None:
                    raise ValidationError(account_not_found(charge.account_id))
                account.balance = to_money(account.balance) + charge.amount
                account.last_updated = when
                charge_row = transaction_to_orm(charge, self.owner_id)
                session.add(charge_row)
                await session.flush()
                # Only the renewal that saw this date may advance it
                result = await session.execute(
                    update(Subscription)
                    .where(
                        Subscription.id == row.id,
                        Subscription.next_renewal_date == subscription.next_renewal_date,
                    )
                    .values(next_renewal_date=subscription.renewed().next_renewal_date)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise StaleDataError(f"Subscription {subscription_id} was renewed concurrently")
                return replace(charge, id=charge_row.id)

        charge = await self._run_guarded(unit, subscription_id)
        self.notifier.publish(
            Change(TRANSACTIONS, _keys([charge])),
            Change(ACCOUNTS, (RowKey(charge.account_id),)),
            Change(SUBSCRIPTIONS, (RowKey(charge.account_id),)),
        )
        return charge

    async def replace_transactions_for_account(
        self, account_id: EntityId, transactions: list[DomainTransaction], when: datetime
    ) -> list[int]:
        """Delete, insert, stamp and rebalance in a single database transaction."""

        async def unit() -> list[int]:
            async with self._session() as session:
                account = await self._account_row(session, account_id)
                if account is None:
                    raise NotFoundError(account_not_found(account_id))
                await session.execute(
                    delete(Transaction)
                    .where(Transaction.account_id == account_id, Transaction.owner_id == self.owner_id)
                    .execution_options(synchronize_session=False)
                )
                rows = [transaction_to_orm(t, self.owner_id) for t in transactions]
                session.add_all(rows)
                account.balance = to_money(account.saldo_iniziale) + sum(
                    (t.amount for t in transactions), Decimal("0")
                )
                account.last_updated = when
                await session.flush()
                return [row.id for row in rows]

        ids = await self._run_guarded(unit, account_id)
        self.notifier.publish(
            Change(TRANSACTIONS, (RowKey(account_id),)),
            Change(ACCOUNTS, (RowKey(account_id),)),
        )
        return ids
