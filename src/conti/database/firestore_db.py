"""Google Cloud Firestore document store implementation.

Layout: ``users/{owner}/accounts``, ``users/{owner}/transactions`` and
``users/{owner}/subscriptions`` are sibling collections; transactions and
subscriptions reference their account through a plain ``accountId`` field.

Queries push at most one condition to Firestore (so no composite indexes
are needed) and apply the rest of the filter, ordering and aggregation in
memory. Live queries attach snapshot listeners through a synchronous
client, whose watch thread hands invalidations back to the event loop.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore import FieldFilter

from conti.database.base import Store
from conti.database.documents import (
    account_from_document,
    account_to_document,
    subscription_from_document,
    subscription_to_document,
    transaction_from_document,
    transaction_to_document,
)
from conti.database.filters import (
    ACCOUNTS,
    SUBSCRIPTIONS,
    TRANSACTIONS,
    SubscriptionFilter,
    TransactionFilter,
    sort_transactions,
)
from conti.database.live import Invalidate, LiveQuery, Unwatch, Watch
from conti.domain.entities import (
    Account,
    AccountSource,
    EntityId,
    Subscription,
    Transaction,
    to_cents,
)
from conti.domain.errors import (
    ConcurrencyConflictError,
    DomainError,
    NotFoundError,
    StoreUnavailableError,
    UnauthenticatedError,
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

USERS = "users"
MAX_BATCH_WRITES = 500
DEFAULT_GUARDED_WRITE_ATTEMPTS = 5

# (operation, document reference, data)
WriteOp = tuple[str, Any, Optional[dict[str, Any]]]

_TRANSIENT = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.TooManyRequests,
)


def _money(value: Any) -> Decimal:
    return to_cents(Decimal(str(value or 0)))


def _chunks(ops: list[WriteOp], size: int = MAX_BATCH_WRITES) -> list[list[WriteOp]]:
    return [ops[i:i + size] for i in range(0, len(ops), size)]


class FirestoreStore(Store):
    """Firestore-based implementation of the Store interface."""

    def __init__(
        self,
        client: firestore.AsyncClient,
        owner_id: Optional[str],
        watch_client: Optional[firestore.Client] = None,
        guarded_write_attempts: int = DEFAULT_GUARDED_WRITE_ATTEMPTS,
    ):
        """Initialize Firestore store.

        Args:
            client: Async client used for reads and writes; may be shared
            owner_id: Resolved owner identifier (the signed-in user)
            watch_client: Synchronous client used for snapshot listeners;
                without one, live queries emit their first value only
            guarded_write_attempts: Attempts per Firestore transaction
        """
        super().__init__(owner_id)
        self.client = client
        self.watch_client = watch_client
        self.guarded_write_attempts = guarded_write_attempts

    def _collection(self, name: str, root: Any = None):
        root = root if root is not None else self.client
        return root.collection(USERS).document(self.require_owner()).collection(name)

    @asynccontextmanager
    async def _translate(self) -> AsyncIterator[None]:
        """Translate google-api-core errors into domain errors."""
        self.require_owner()
        try:
            yield
        except google_exceptions.Aborted as e:
            raise ConcurrencyConflictError(str(e)) from e
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as e:
            raise UnauthenticatedError(str(e)) from e
        except (google_exceptions.InvalidArgument, google_exceptions.FailedPrecondition) as e:
            raise ValidationError(str(e)) from e
        except _TRANSIENT as e:
            logger.error(f"Firestore unavailable: {e}")
            raise StoreUnavailableError(f"Store unavailable: {e}") from e
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore call failed: {e}")
            raise StoreUnavailableError(f"Store call failed: {e}") from e

    async def _run_guarded(
        self, unit: Callable[[Any], Awaitable[T]], account_id: EntityId
    ) -> T:
        """Run a transactional unit; Firestore retries it on contention."""
        transactional = firestore.async_transactional(unit)
        try:
            async with self._translate():
                return await transactional(self.client.transaction(max_attempts=self.guarded_write_attempts))
        except ConcurrencyConflictError as e:
            raise ConcurrencyConflictError(
                guarded_write_conflict(account_id, self.guarded_write_attempts)
            ) from e
        except DomainError:
            raise
        except ValueError as e:
            # Raised by the client once max_attempts is exhausted.
            raise ConcurrencyConflictError(
                guarded_write_conflict(account_id, self.guarded_write_attempts)
            ) from e

    def _watch(self, build_query: Callable[[Any], Any]) -> Watch:
        """Build a Watch hook attaching a snapshot listener to a query."""

        def watch(invalidate: Invalidate) -> Unwatch:
            if self.watch_client is None:
                return lambda: None
            loop = asyncio.get_running_loop()

            def on_snapshot(docs, changes, read_time) -> None:
                # Runs on the watch thread. The initial snapshot also lands
                # here; the subscription drops the unchanged re-read.
                if not loop.is_closed():
                    loop.call_soon_threadsafe(invalidate)

            handle = build_query(self.watch_client).on_snapshot(on_snapshot)
            return handle.unsubscribe

        return watch

    def _live(self, fetch: Callable[[], Awaitable[T]], build_query: Callable[[Any], Any]) -> LiveQuery[T]:
        return LiveQuery(fetch, self._watch(build_query))

    async def _stream(self, query) -> list[tuple[str, dict[str, Any]]]:
        async with self._translate():
            return [(snap.id, snap.to_dict()) async for snap in query.stream()]

    async def _get(self, name: str, doc_id: EntityId) -> Optional[dict[str, Any]]:
        async with self._translate():
            snap = await self._collection(name).document(str(doc_id)).get()
        return snap.to_dict() if snap.exists else None

    async def _commit(self, ops: list[WriteOp]) -> int:
        """Commit writes in batches. Returns how many batches were committed.

        On failure the committed count is attached to the raised exception
        as ``committed_batches``.
        """
        committed = 0
        try:
            for chunk in _chunks(ops):
                batch = self.client.batch()
                for op, ref, data in chunk:
                    if op == "set":
                        batch.set(ref, data)
                    elif op == "update":
                        batch.update(ref, data)
                    else:
                        batch.delete(ref)
                await batch.commit()
                committed += 1
        except Exception as e:
            e.committed_batches = committed
            raise
        return committed

    async def initialize_schema(self) -> None:
        """Collections are created on first write; nothing to prepare."""
        logger.debug(f"Firestore store ready for owner {self.owner_id}")

    async def close(self) -> None:
        """The clients are shared process-wide; see factories.dispose."""
        pass

    def _transactions_query(self, filters: TransactionFilter, root: Any = None):
        query = self._collection(TRANSACTIONS, root)
        if filters.account_id is not None:
            return query.where(filter=FieldFilter("accountId", "==", str(filters.account_id)))
        if filters.start_date is not None:
            query = query.where(filter=FieldFilter("date", ">=", filters.start_date.isoformat()))
        if filters.end_date is not None:
            query = query.where(filter=FieldFilter("date", "<=", filters.end_date.isoformat()))
        return query

    def _subscriptions_query(self, filters: SubscriptionFilter, root: Any = None):
        query = self._collection(SUBSCRIPTIONS, root)
        if filters.account_id is not None:
            return query.where(filter=FieldFilter("accountId", "==", str(filters.account_id)))
        if filters.active is not None:
            return query.where(filter=FieldFilter("isActive", "==", filters.active))
        return query

    # Account operations
    async def insert_account(self, account: Account) -> str:
        """Insert an account. Returns its document key."""
        async with self._translate():
            ref = self._collection(ACCOUNTS).document()
            await ref.set(account_to_document(account))
        return ref.id

    async def update_account(self, account: Account) -> None:
        """Update account metadata, shifting the cached balance if the opening balance moved."""
        ref = self._collection(ACCOUNTS).document(str(account.id))

        async def unit(tx) -> None:
            snap = await ref.get(transaction=tx)
            if not snap.exists:
                raise NotFoundError(account_not_found(account.id))
            current = snap.to_dict()
            opening_delta = account.opening_balance - _money(current.get("openingBalance"))
            data = account_to_document(account)
            data["balance"] = float(_money(current.get("balance")) + opening_delta)
            tx.set(ref, data)

        await self._run_guarded(unit, account.id)

    async def delete_account(self, account_id: EntityId) -> None:
        """Delete an account with its transactions and subscriptions.

        The account document goes last, so an interrupted cascade can be
        completed by deleting again.
        """
        if await self._get(ACCOUNTS, account_id) is None:
            raise NotFoundError(account_not_found(account_id))
        ops: list[WriteOp] = []
        for name in (TRANSACTIONS, SUBSCRIPTIONS):
            query = self._collection(name).where(filter=FieldFilter("accountId", "==", str(account_id)))
            for doc_id, _ in await self._stream(query):
                ops.append(("delete", self._collection(name).document(doc_id), None))
        ops.append(("delete", self._collection(ACCOUNTS).document(str(account_id)), None))
        async with self._translate():
            await self._commit(ops)
        logger.debug(f"Deleted account {account_id} and {len(ops) - 1} dependent documents")

    async def get_account(self, account_id: EntityId) -> Optional[Account]:
        data = await self._get(ACCOUNTS, account_id)
        return None if data is None else account_from_document(str(account_id), data)

    async def stamp_account(self, account_id: EntityId, when: datetime) -> None:
        async with self._translate():
            try:
                await self._collection(ACCOUNTS).document(str(account_id)).update({"lastUpdated": when})
            except google_exceptions.NotFound as e:
                raise NotFoundError(account_not_found(account_id)) from e

    def observe_accounts(self, source: Optional[AccountSource] = None) -> LiveQuery[list[Account]]:
        async def fetch() -> list[Account]:
            docs = await self._stream(self._collection(ACCOUNTS))
            accounts = [account_from_document(doc_id, data) for doc_id, data in docs]
            if source is not None:
                accounts = [a for a in accounts if a.source == source]
            return sorted(accounts, key=lambda a: (a.name, str(a.id)))

        return self._live(fetch, lambda root: self._collection(ACCOUNTS, root))

    # Transaction operations
    async def insert_transactions(self, transactions: list[Transaction]) -> list[str]:
        refs = [self._collection(TRANSACTIONS).document() for _ in transactions]
        ops = [("set", ref, transaction_to_document(t)) for ref, t in zip(refs, transactions)]
        async with self._translate():
            await self._commit(ops)
        return [ref.id for ref in refs]

    async def update_transaction(self, transaction: Transaction) -> None:
        if await self._get(TRANSACTIONS, transaction.id) is None:
            raise NotFoundError(transaction_not_found(transaction.id))
        async with self._translate():
            await self._collection(TRANSACTIONS).document(str(transaction.id)).set(
                transaction_to_document(transaction)
            )

    async def delete_transactions_for_account(self, account_id: EntityId) -> int:
        docs = await self._stream(self._transactions_query(TransactionFilter(account_id=account_id)))
        ops = [("delete", self._collection(TRANSACTIONS).document(doc_id), None) for doc_id, _ in docs]
        async with self._translate():
            await self._commit(ops)
        return len(ops)

    async def get_transaction(self, transaction_id: EntityId) -> Optional[Transaction]:
        data = await self._get(TRANSACTIONS, transaction_id)
        return None if data is None else transaction_from_document(str(transaction_id), data)

    async def _select_transactions(self, filters: TransactionFilter) -> list[Transaction]:
        docs = await self._stream(self._transactions_query(filters))
        transactions = [transaction_from_document(doc_id, data) for doc_id, data in docs]
        return [t for t in transactions if filters.matches(t)]

    def observe_transactions(self, filters: Optional[TransactionFilter] = None) -> LiveQuery[list[Transaction]]:
        filters = filters or TransactionFilter()

        async def fetch() -> list[Transaction]:
            return sort_transactions(await self._select_transactions(filters))

        return self._live(fetch, lambda root: self._transactions_query(filters, root))

    def observe_categories(self) -> LiveQuery[list[str]]:
        filters = TransactionFilter()

        async def fetch() -> list[str]:
            return sorted({t.category for t in await self._select_transactions(filters)})

        return self._live(fetch, lambda root: self._transactions_query(filters, root))

    def observe_category_count(self) -> LiveQuery[int]:
        return self.observe_categories().map(len)

    def observe_transaction_count(self, account_id: EntityId) -> LiveQuery[int]:
        return self.observe_transactions(TransactionFilter(account_id=account_id)).map(len)

    def observe_transaction_sum(self, account_id: EntityId, until: Optional[date] = None) -> LiveQuery[Decimal]:
        filters = TransactionFilter(account_id=account_id, end_date=until)
        return self.observe_transactions(filters).map(
            lambda transactions: to_cents(sum((t.amount for t in transactions), Decimal("0")))
        )

    def observe_income_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[Decimal]:
        filters = TransactionFilter(account_id=account_id, start_date=start_date, end_date=end_date)
        return self.observe_transactions(filters).map(
            lambda transactions: to_cents(sum((t.amount for t in transactions if t.is_income), Decimal("0")))
        )

    def observe_expense_total(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[Decimal]:
        filters = TransactionFilter(account_id=account_id, start_date=start_date, end_date=end_date)
        return self.observe_transactions(filters).map(
            lambda transactions: to_cents(sum((-t.amount for t in transactions if t.is_expense), Decimal("0")))
        )

    # Subscription operations
    async def insert_subscription(self, subscription: Subscription) -> str:
        async with self._translate():
            ref = self._collection(SUBSCRIPTIONS).document()
            await ref.set(subscription_to_document(subscription))
        return ref.id

    async def update_subscription(self, subscription: Subscription) -> None:
        if await self._get(SUBSCRIPTIONS, subscription.id) is None:
            raise NotFoundError(subscription_not_found(subscription.id))
        async with self._translate():
            await self._collection(SUBSCRIPTIONS).document(str(subscription.id)).set(
                subscription_to_document(subscription)
            )

    async def delete_subscription(self, subscription_id: EntityId) -> None:
        if await self._get(SUBSCRIPTIONS, subscription_id) is None:
            raise NotFoundError(subscription_not_found(subscription_id))
        async with self._translate():
            await self._collection(SUBSCRIPTIONS).document(str(subscription_id)).delete()

    async def set_subscription_status(
        self, subscription_id: EntityId, active: bool, end_date: Optional[date]
    ) -> None:
        async with self._translate():
            try:
                await self._collection(SUBSCRIPTIONS).document(str(subscription_id)).update(
                    {"isActive": active, "endDate": None if end_date is None else end_date.isoformat()}
                )
            except google_exceptions.NotFound as e:
                raise NotFoundError(subscription_not_found(subscription_id)) from e

    async def get_subscription(self, subscription_id: EntityId) -> Optional[Subscription]:
        data = await self._get(SUBSCRIPTIONS, subscription_id)
        return None if data is None else subscription_from_document(str(subscription_id), data)

    def observe_subscriptions(self, filters: Optional[SubscriptionFilter] = None) -> LiveQuery[list[Subscription]]:
        filters = filters or SubscriptionFilter()

        async def fetch() -> list[Subscription]:
            docs = await self._stream(self._subscriptions_query(filters))
            subscriptions = [subscription_from_document(doc_id, data) for doc_id, data in docs]
            return filters.sort([s for s in subscriptions if filters.matches(s)])

        return self._live(fetch, lambda root: self._subscriptions_query(filters, root))

    # Guarded operations
    async def record_transactions(self, transactions: list[Transaction], when: datetime) -> list[str]:
        """Insert transactions and adjust balances inside one Firestore transaction."""
        if not transactions:
            return []
        totals: dict[str, Decimal] = defaultdict(Decimal)
        for transaction in transactions:
            totals[str(transaction.account_id)] += transaction.amount
        refs = [self._collection(TRANSACTIONS).document() for _ in transactions]

        async def unit(tx) -> None:
            # Firestore transactions need every read before the first write.
            snapshots = {}
            for account_id in totals:
                snap = await self._collection(ACCOUNTS).document(account_id).get(transaction=tx)
                if not snap.exists:
                    raise ValidationError(account_not_found(account_id))
                snapshots[account_id] = snap
            for account_id, delta in totals.items():
                balance = _money(snapshots[account_id].to_dict().get("balance")) + delta
                tx.update(snapshots[account_id].reference, {"balance": float(balance), "lastUpdated": when})
            for ref, transaction in zip(refs, transactions):
                tx.set(ref, transaction_to_document(transaction))

        await self._run_guarded(unit, next(iter(totals)))
        return [ref.id for ref in refs]

    async def remove_transaction(self, transaction_id: EntityId, when: datetime) -> Transaction:
        ref = self._collection(TRANSACTIONS).document(str(transaction_id))

        async def unit(tx) -> Transaction:
            snap = await ref.get(transaction=tx)
            if not snap.exists:
                raise NotFoundError(transaction_not_found(transaction_id))
            removed = transaction_from_document(snap.id, snap.to_dict())
            account_ref = self._collection(ACCOUNTS).document(str(removed.account_id))
            account = await account_ref.get(transaction=tx)
            if account.exists:
                balance = _money(account.to_dict().get("balance")) - removed.amount
                tx.update(account_ref, {"balance": float(balance), "lastUpdated": when})
            tx.delete(ref)
            return removed

        return await self._run_guarded(unit, transaction_id)

    async def revise_transaction(self, transaction: Transaction, when: datetime) -> Transaction:
        ref = self._collection(TRANSACTIONS).document(str(transaction.id))

        async def unit(tx) -> Transaction:
            snap = await ref.get(transaction=tx)
            if not snap.exists:
                raise NotFoundError(transaction_not_found(transaction.id))
            previous = transaction_from_document(snap.id, snap.to_dict())
            deltas: dict[str, Decimal] = defaultdict(Decimal)
            deltas[str(previous.account_id)] -= previous.amount
            deltas[str(transaction.account_id)] += transaction.amount
            accounts = {}
            for account_id in deltas:
                account = await self._collection(ACCOUNTS).document(account_id).get(transaction=tx)
                if not account.exists:
                    raise ValidationError(account_not_found(account_id))
                accounts[account_id] = account
            for account_id, delta in deltas.items():
                if delta:
                    balance = _money(accounts[account_id].to_dict().get("balance")) + delta
                    tx.update(accounts[account_id].reference, {"balance": float(balance), "lastUpdated": when})
            tx.set(ref, transaction_to_document(transaction))
            return previous

        return await self._run_guarded(unit, transaction.account_id)

    async def renew_subscription(
        self, subscription_id: EntityId, on: Optional[date], when: datetime
    ) -> Transaction:
        """Charge one period and advance the renewal date inside one Firestore transaction."""
        ref = self._collection(SUBSCRIPTIONS).document(str(subscription_id))
        charge_ref = self._collection(TRANSACTIONS).document()

        async def unit(tx) -> Transaction:
            snap = await ref.get(transaction=tx)
            if not snap.exists:
                raise NotFoundError(subscription_not_found(subscription_id))
            subscription = subscription_from_document(snap.id, snap.to_dict())
            if not subscription.active:
                raise ValidationError(subscription_not_active(subscription_id))
            charge = replace(subscription.renewal_charge(on), inserted_at=when)
            account_ref = self._collection(ACCOUNTS).document(str(charge.account_id))
            account = await account_ref.get(transaction=tx)
            if not account.exists:
                raise ValidationError(account_not_found(charge.account_id))
            balance = _money(account.to_dict().get("balance")) + charge.amount
            tx.update(account_ref, {"balance": float(balance), "lastUpdated": when})
            tx.set(charge_ref, transaction_to_document(charge))
            tx.update(ref, {"nextRenewalDate": subscription.renewed().next_renewal_date.isoformat()})
            return replace(charge, id=charge_ref.id)

        return await self._run_guarded(unit, subscription_id)

    async def replace_transactions_for_account(
        self, account_id: EntityId, transactions: list[Transaction], when: datetime
    ) -> list[str]:
        """Swap an account's transactions using batched writes.

        Firestore transactions are capped at 500 writes, so the swap runs as
        consecutive batches with the account update in the last one. If a
        batch fails after earlier ones committed, the old documents are
        restored and the new ones removed. Between the first commit and
        completion (or rollback), readers can observe a partial set.
        """
        account = await self._get(ACCOUNTS, account_id)
        if account is None:
            raise NotFoundError(account_not_found(account_id))
        old_docs = await self._stream(self._transactions_query(TransactionFilter(account_id=account_id)))
        new_refs = [self._collection(TRANSACTIONS).document() for _ in transactions]
        balance = _money(account.get("openingBalance")) + sum((t.amount for t in transactions), Decimal("0"))

        ops: list[WriteOp] = [
            ("delete", self._collection(TRANSACTIONS).document(doc_id), None) for doc_id, _ in old_docs
        ]
        ops += [("set", ref, transaction_to_document(t)) for ref, t in zip(new_refs, transactions)]
        ops.append(
            (
                "update",
                self._collection(ACCOUNTS).document(str(account_id)),
                {"balance": float(balance), "lastUpdated": when},
            )
        )
        try:
            async with self._translate():
                await self._commit(ops)
        except DomainError as e:
            if getattr(e.__cause__, "committed_batches", 0):
                await self._roll_back_replace(account_id, old_docs, new_refs)
            raise
        return [ref.id for ref in new_refs]

    async def _roll_back_replace(
        self, account_id: EntityId, old_docs: list[tuple[str, dict[str, Any]]], new_refs: list[Any]
    ) -> None:
        logger.warning(f"Replacing transactions of account {account_id} failed midway; restoring previous set")
        ops: list[WriteOp] = [("delete", ref, None) for ref in new_refs]
        ops += [("set", self._collection(TRANSACTIONS).document(doc_id), data) for doc_id, data in old_docs]
        try:
            async with self._translate():
                await self._commit(ops)
        except DomainError as e:
            logger.error(f"Could not restore transactions of account {account_id}: {e}")
