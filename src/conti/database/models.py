"""SQLAlchemy models for the conti relational store."""

from datetime import datetime, UTC
from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    DateTime,
    Date,
    Numeric,
    Boolean,
    Index,
    event,
)
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MONEY = Numeric(14, 2)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Account(Base):
    """Bank account model.

    The version column guards balance updates: every flush checks and bumps
    it, so a write based on a stale read fails instead of overwriting.
    """

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="OTHER")
    saldo_iniziale = Column(MONEY, nullable=False, default=Decimal("0"))
    balance = Column(MONEY, nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False, default="EUR")
    iban = Column(String, nullable=True)
    institution = Column(String, nullable=True)
    source_flag = Column(String, nullable=False, default="MANUAL")
    last_updated = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    transactions = relationship(
        "Transaction", back_populates="account", cascade="all, delete-orphan", passive_deletes=True
    )
    subscriptions = relationship(
        "Subscription", back_populates="account", cascade="all, delete-orphan", passive_deletes=True
    )


class Transaction(Base):
    """Transaction model."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    description = Column(String, nullable=False, default="")
    amount = Column(MONEY, nullable=False)
    category = Column(String, nullable=False, default="")
    notes = Column(String, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    # Informational link; no foreign key so hard-deleting a subscription leaves it dangling
    subscription_id = Column(Integer, nullable=True)
    inserted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_transactions_account_date", "account_id", "date"),
        Index("ix_transactions_category", "category"),
        Index("ix_transactions_owner_date", "owner_id", "date"),
    )

    # Relationships
    account = relationship("Account", back_populates="transactions")


class Subscription(Base):
    """Recurring subscription model."""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    amount = Column(MONEY, nullable=False)
    frequency = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    next_renewal_date = Column(Date, nullable=False, index=True)
    end_date = Column(Date, nullable=True)
    category = Column(String, nullable=False, default="Subscription")
    active = Column(Boolean, nullable=False, default=True, index=True)
    notes = Column(String, nullable=True)

    # Relationships
    account = relationship("Account", back_populates="subscriptions")


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    """SQLite leaves foreign keys (and so cascades) off unless asked."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_for_url(database_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine, enabling SQLite foreign keys."""
    engine = create_async_engine(database_url, echo=False)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables and indexes that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
