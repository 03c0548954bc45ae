"""Tests for database and document mappers."""

from datetime import date, datetime, UTC
from decimal import Decimal

from conti.database.documents import (
    account_from_document,
    account_to_document,
    subscription_from_document,
    subscription_to_document,
    transaction_from_document,
    transaction_to_document,
)
from conti.database.mappers import (
    account_to_domain,
    account_to_orm,
    subscription_to_domain,
    subscription_to_orm,
    to_money,
    transaction_to_domain,
)
from conti.database.models import Account as ORMAccount, Transaction as ORMTransaction
from conti.domain.entities import (
    Account,
    AccountKind,
    AccountSource,
    PaymentFrequency,
    Subscription,
    Transaction,
)


class TestMoney:
    def test_none_is_zero(self):
        assert to_money(None) == Decimal("0.00")

    def test_float_aggregate_is_rounded(self):
        """SQLite returns some aggregates as floats."""
        assert to_money(0.1 + 0.2) == Decimal("0.30")


class TestAccountMapper:
    """Tests for Account mapper."""

    def test_account_to_domain(self):
        orm_account = ORMAccount(
            id=1,
            owner_id="me",
            name="Hype",
            kind="CARD_WALLET",
            saldo_iniziale=Decimal("50.00"),
            balance=Decimal("42.10"),
            currency="EUR",
            source_flag="IMPORTED",
            last_updated=datetime(2025, 1, 1, 12, 0),
        )
        account = account_to_domain(orm_account)
        assert account.id == 1
        assert account.kind is AccountKind.CARD_WALLET
        assert account.opening_balance == Decimal("50.00")
        assert account.balance == Decimal("42.10")
        assert account.is_imported
        assert account.last_updated.tzinfo is not None

    def test_new_row_balance_starts_at_opening(self):
        row = account_to_orm(Account(name="Main", opening_balance=Decimal("100")), "me")
        assert row.balance == Decimal("100")
        assert row.saldo_iniziale == Decimal("100")
        assert row.owner_id == "me"


class TestTransactionMapper:
    def test_transaction_to_domain(self):
        row = ORMTransaction(
            id=7,
            owner_id="me",
            account_id=1,
            date=date(2025, 2, 3),
            description="Coffee",
            amount=Decimal("-1.20"),
            category="Bar",
            is_recurring=False,
            inserted_at=datetime(2025, 2, 3, 8, 0, tzinfo=UTC),
        )
        txn = transaction_to_domain(row)
        assert txn.id == 7
        assert txn.amount == Decimal("-1.20")
        assert txn.is_expense
        assert txn.subscription_id is None


class TestSubscriptionMapper:
    def test_round_trip_keeps_frequency(self):
        subscription = Subscription(
            name="Prime",
            amount=Decimal("49.90"),
            frequency=PaymentFrequency.ANNUAL,
            start_date=date(2025, 1, 1),
            next_renewal_date=date(2026, 1, 1),
            account_id=1,
        )
        row = subscription_to_orm(subscription, "me")
        row.id = 3
        assert row.frequency == "ANNUAL"
        restored = subscription_to_domain(row)
        assert restored.frequency is PaymentFrequency.ANNUAL
        assert restored.id == 3


class TestDocumentMappers:
    """Tests for Firestore document mapping."""

    def test_account_document_fields(self):
        data = account_to_document(
            Account(name="Main", opening_balance=Decimal("10.50"), iban="IT60X0542811101000000123456")
        )
        assert data["openingBalance"] == 10.5
        assert data["balance"] == 10.5
        assert data["source"] == "MANUAL"

    def test_account_from_document_defaults(self):
        account = account_from_document("abc", {"name": "Main", "balance": 3.1})
        assert account.id == "abc"
        assert account.kind is AccountKind.OTHER
        assert account.source is AccountSource.MANUAL
        assert account.balance == Decimal("3.10")
        assert account.opening_balance == Decimal("0.00")

    def test_transaction_dates_are_iso_strings(self):
        data = transaction_to_document(
            Transaction(account_id="acc", date=date(2025, 3, 9), amount=Decimal("-19.99"))
        )
        assert data["date"] == "2025-03-09"
        assert data["accountId"] == "acc"
        assert data["type"] == "expense"

    def test_transaction_from_document(self):
        txn = transaction_from_document(
            "t1",
            {"accountId": "acc", "date": "2025-03-09", "amount": -19.99, "isRecurring": True, "subscriptionId": "s1"},
        )
        assert txn.date == date(2025, 3, 9)
        assert txn.amount == Decimal("-19.99")
        assert txn.subscription_id == "s1"

    def test_subscription_document(self):
        subscription = Subscription(
            name="Gym",
            amount=Decimal("30"),
            frequency=PaymentFrequency.MONTHLY,
            start_date=date(2025, 1, 1),
            next_renewal_date=date(2025, 2, 1),
            account_id="acc",
            active=False,
            end_date=date(2025, 6, 30),
        )
        data = subscription_to_document(subscription)
        assert data["isActive"] is False
        assert data["endDate"] == "2025-06-30"
        restored = subscription_from_document("s1", data)
        assert restored.end_date == date(2025, 6, 30)
        assert restored.amount == Decimal("30.00")
        assert not restored.active
