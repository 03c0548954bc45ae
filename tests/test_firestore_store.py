"""Tests for the Firestore store.

Error translation and batching run against a mocked client. The tests in
TestFirestoreEmulator need a running emulator (FIRESTORE_EMULATOR_HOST).
"""

import asyncio
import os
import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from conti.database.firestore_db import FirestoreStore
from conti.domain.entities import Account, PaymentFrequency, Subscription, Transaction
from conti.domain.errors import NotFoundError, StoreUnavailableError, UnauthenticatedError
from conti.domain.repository import Repository
from conftest import FIXED_NOW

TIMEOUT = 10.0


def document_mock(client: MagicMock) -> MagicMock:
    """The document reference every users/{owner}/{collection}/{id} path resolves to."""
    return client.collection.return_value.document.return_value.collection.return_value.document.return_value


def snapshot(doc_id: str, data: dict) -> MagicMock:
    snap = MagicMock(id=doc_id, exists=True)
    snap.to_dict.return_value = data
    return snap


def stream_of(*snapshots):
    async def stream():
        for snap in snapshots:
            yield snap

    return stream


class TestErrorTranslation:
    async def test_missing_owner(self):
        client = MagicMock()
        with pytest.raises(UnauthenticatedError):
            await FirestoreStore(client, None).get_account("a")
        client.collection.assert_not_called()

    async def test_unavailable(self):
        client = MagicMock()
        document_mock(client).get = AsyncMock(side_effect=google_exceptions.ServiceUnavailable("down"))
        with pytest.raises(StoreUnavailableError):
            await FirestoreStore(client, "me").get_account("a")

    async def test_permission_denied(self):
        client = MagicMock()
        document_mock(client).get = AsyncMock(side_effect=google_exceptions.PermissionDenied("rules"))
        with pytest.raises(UnauthenticatedError):
            await FirestoreStore(client, "me").get_account("a")

    async def test_missing_document(self):
        client = MagicMock()
        document_mock(client).get = AsyncMock(return_value=MagicMock(exists=False))
        assert await FirestoreStore(client, "me").get_account("a") is None

    async def test_delete_missing_subscription(self):
        client = MagicMock()
        document_mock(client).get = AsyncMock(return_value=MagicMock(exists=False))
        with pytest.raises(NotFoundError):
            await FirestoreStore(client, "me").delete_subscription("s1")


class TestBatching:
    """Writes are split into batches of at most 500."""

    async def test_insert_many_transactions(self):
        client = MagicMock()
        batch = client.batch.return_value
        batch.commit = AsyncMock()
        transactions = [
            Transaction(account_id="acc", date=date(2025, 3, 1), amount=Decimal("-1.00")) for _ in range(1201)
        ]

        ids = await FirestoreStore(client, "me").insert_transactions(transactions)

        assert len(ids) == 1201
        assert client.batch.call_count == 3
        assert batch.set.call_count == 1201

    async def test_failed_replace_is_rolled_back(self):
        client = MagicMock()
        document_mock(client).get = AsyncMock(
            return_value=snapshot("acc", {"name": "Main", "openingBalance": 10.0, "balance": 10.0})
        )
        collection = client.collection.return_value.document.return_value.collection.return_value
        collection.where.return_value.stream = stream_of()
        batch = client.batch.return_value
        # Second batch fails; the two rollback batches succeed
        batch.commit = AsyncMock(side_effect=[None, google_exceptions.ServiceUnavailable("down"), None, None])
        transactions = [
            Transaction(account_id="acc", date=date(2025, 3, 1), amount=Decimal("-1.00")) for _ in range(600)
        ]

        with pytest.raises(StoreUnavailableError):
            await FirestoreStore(client, "me").replace_transactions_for_account("acc", transactions, FIXED_NOW)

        assert client.batch.call_count == 4
        assert batch.delete.call_count == 600

    async def test_delete_account_removes_account_last(self):
        client = MagicMock()
        document_mock(client).get = AsyncMock(return_value=snapshot("acc", {"name": "Main"}))
        collection = client.collection.return_value.document.return_value.collection.return_value
        collection.where.return_value.stream = stream_of(snapshot("t1", {}), snapshot("t2", {}))
        batch = client.batch.return_value
        batch.commit = AsyncMock()

        await FirestoreStore(client, "me").delete_account("acc")

        # Two transactions, two subscriptions (same mocked query), then the account
        assert batch.delete.call_count == 5
        assert collection.document.call_args_list[-1].args == ("acc",)


emulator = pytest.mark.skipif(
    not os.environ.get("FIRESTORE_EMULATOR_HOST"), reason="Firestore emulator not configured"
)


@pytest.fixture
async def firestore_repository():
    from google.cloud import firestore

    project = os.environ.get("CONTI_FIRESTORE_PROJECT", "conti-test")
    store = FirestoreStore(
        firestore.AsyncClient(project=project),
        f"owner-{uuid.uuid4().hex}",
        watch_client=firestore.Client(project=project),
    )
    return Repository(store, clock=lambda: FIXED_NOW)


@emulator
class TestFirestoreEmulator:
    """End-to-end repository behaviour on the Firestore emulator."""

    async def test_record_and_balance(self, firestore_repository):
        repository = firestore_repository
        account_id = await repository.create_account(Account(name="Main", opening_balance=Decimal("100.00")))

        expense_id = await repository.record_transaction(
            Transaction(account_id=account_id, date=date(2025, 3, 1), amount=Decimal("-25.50"))
        )
        await repository.record_transaction(
            Transaction(account_id=account_id, date=date(2025, 3, 2), amount=Decimal("10.00"))
        )
        assert (await repository.get_account(account_id)).balance == Decimal("84.50")

        await repository.delete_transaction(expense_id)
        assert await repository.get_balance(account_id) == Decimal("110.00")
        assert (await repository.get_account(account_id)).balance == Decimal("110.00")

    async def test_live_balance(self, firestore_repository):
        repository = firestore_repository
        account_id = await repository.create_account(Account(name="Main", opening_balance=Decimal("100.00")))

        async with repository.observe_balance(account_id).subscribe() as balances:
            assert await balances.receive(TIMEOUT) == Decimal("100.00")
            await repository.record_transaction(
                Transaction(account_id=account_id, date=date(2025, 3, 1), amount=Decimal("-25.50"))
            )
            assert await balances.receive(TIMEOUT) == Decimal("74.50")

    async def test_replace_and_cascade(self, firestore_repository):
        repository = firestore_repository
        account_id = await repository.create_account(Account(name="Main", opening_balance=Decimal("10.00")))
        await repository.record_transaction(
            Transaction(account_id=account_id, date=date(2025, 2, 1), amount=Decimal("-99.00"))
        )

        await repository.replace_transactions_for_account(
            account_id,
            [
                Transaction(account_id=account_id, date=date(2025, 3, 1), amount=Decimal("-1.00")),
                Transaction(account_id=account_id, date=date(2025, 3, 2), amount=Decimal("6.00")),
            ],
        )
        assert (await repository.get_account(account_id)).balance == Decimal("15.00")
        assert await repository.observe_transaction_count(account_id).first() == 2

        subscription_id = await repository.create_subscription(
            Subscription(
                name="Netflix",
                amount=Decimal("12.99"),
                frequency=PaymentFrequency.MONTHLY,
                start_date=date(2025, 1, 10),
                next_renewal_date=date(2025, 3, 10),
                account_id=account_id,
            )
        )
        await repository.delete_account(account_id)

        assert await repository.get_account(account_id) is None
        assert await repository.get_subscription(subscription_id) is None
        assert await repository.list_transactions() == []

    async def test_subscription_renewal(self, firestore_repository):
        repository = firestore_repository
        account_id = await repository.create_account(Account(name="Main"))
        subscription_id = await repository.create_subscription(
            Subscription(
                name="Gym",
                amount=Decimal("30.00"),
                frequency=PaymentFrequency.QUARTERLY,
                start_date=date(2025, 1, 1),
                next_renewal_date=date(2025, 1, 1),
                account_id=account_id,
            )
        )

        transaction_id = await repository.process_subscription_renewal(subscription_id)

        charge = await repository.get_transaction(transaction_id)
        assert charge.amount == Decimal("-30.00")
        assert charge.subscription_id == subscription_id
        assert (await repository.get_subscription(subscription_id)).next_renewal_date == date(2025, 4, 1)
        assert (await repository.get_account(account_id)).balance == Decimal("-30.00")

    async def test_concurrent_renewals_charge_distinct_periods(self, firestore_repository):
        repository = firestore_repository
        account_id = await repository.create_account(Account(name="Main", opening_balance=Decimal("100.00")))
        subscription_id = await repository.create_subscription(
            Subscription(
                name="Netflix",
                amount=Decimal("12.99"),
                frequency=PaymentFrequency.MONTHLY,
                start_date=date(2025, 1, 10),
                next_renewal_date=date(2025, 3, 10),
                account_id=account_id,
            )
        )

        await asyncio.gather(
            repository.process_subscription_renewal(subscription_id),
            repository.process_subscription_renewal(subscription_id),
        )

        charges = await repository.observe_subscription_transactions(subscription_id).first()
        assert sorted(t.date for t in charges) == [date(2025, 3, 10), date(2025, 4, 10)]
        assert (await repository.get_subscription(subscription_id)).next_renewal_date == date(2025, 5, 10)
        assert (await repository.get_account(account_id)).balance == Decimal("74.02")
