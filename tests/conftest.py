"""Shared pytest fixtures for conti tests."""

import os
import tempfile
from datetime import date, datetime, UTC
from decimal import Decimal

import pytest

from conti.database.factories import create_sqlite_store
from conti.domain.entities import Account, AccountKind, PaymentFrequency, Subscription
from conti.domain.repository import Repository
from conti.domain.summary import StatisticsService

OWNER = "test-owner"
FIXED_NOW = datetime(2025, 3, 15, 9, 30, tzinfo=UTC)


@pytest.fixture
def db_path():
    """Create a temporary database file path."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    yield path

    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture
async def store(db_path):
    """Create a SQLite store on a temporary database."""
    store = create_sqlite_store(database_path=db_path, owner_id=OWNER)
    await store.initialize_schema()

    yield store

    await store.close()


@pytest.fixture
def repository(store):
    """Create a Repository with a fixed clock."""
    return Repository(store, clock=lambda: FIXED_NOW)


@pytest.fixture
def statistics(store):
    """Create a StatisticsService over the test store."""
    return StatisticsService(store)


@pytest.fixture
async def sample_account(repository):
    """Create a sample account with an opening balance of 100.00."""
    account_id = await repository.create_account(
        Account(name="Conto Corrente", kind=AccountKind.PRIMARY_BANK, opening_balance=Decimal("100.00"))
    )
    return await repository.get_account(account_id)


@pytest.fixture
async def sample_subscription(repository, sample_account):
    """Create a monthly subscription on the sample account."""
    subscription_id = await repository.create_subscription(
        Subscription(
            name="Netflix",
            amount=Decimal("12.99"),
            frequency=PaymentFrequency.MONTHLY,
            start_date=date(2025, 1, 10),
            next_renewal_date=date(2025, 3, 10),
            account_id=sample_account.id,
            category="Streaming",
        )
    )
    return await repository.get_subscription(subscription_id)


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
