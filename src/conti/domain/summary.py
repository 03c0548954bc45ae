"""Spending and subscription statistics domain service."""

import calendar
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from conti.database.base import Store
from conti.database.filters import SubscriptionFilter, TransactionFilter
from conti.database.live import LiveQuery
from conti.domain.entities import (
    EntityId,
    FrequencyBreakdown,
    MonthSummary,
    PaymentFrequency,
    Subscription,
    Transaction,
    to_cents,
)

ZERO = Decimal("0.00")


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """Return the first and last day of a calendar month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def total_monthly_cost(subscriptions: list[Subscription]) -> Decimal:
    return to_cents(sum((s.monthly_cost for s in subscriptions), ZERO))


def total_annual_cost(subscriptions: list[Subscription]) -> Decimal:
    return to_cents(sum((s.annual_cost for s in subscriptions), ZERO))


def frequency_breakdown(subscriptions: list[Subscription]) -> list[FrequencyBreakdown]:
    """Group subscriptions by frequency, in frequency order, skipping empty groups."""
    groups: dict[PaymentFrequency, list[Subscription]] = defaultdict(list)
    for subscription in subscriptions:
        groups[subscription.frequency].append(subscription)
    return [
        FrequencyBreakdown(
            frequency=frequency,
            count=len(groups[frequency]),
            total=to_cents(sum((s.amount for s in groups[frequency]), ZERO)),
        )
        for frequency in PaymentFrequency
        if groups[frequency]
    ]


def expenses_by_category(transactions: list[Transaction]) -> dict[str, Decimal]:
    """Sum absolute expense amounts per category, largest first."""
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for transaction in transactions:
        if transaction.is_expense:
            totals[transaction.category] += -transaction.amount
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return {category: to_cents(total) for category, total in ordered}


class StatisticsService:
    """Service for subscription costs and spending summaries."""

    def __init__(self, store: Store):
        """Initialize statistics service.

        Args:
            store: Store instance
        """
        self.store = store

    def _active_subscriptions(self) -> LiveQuery[list[Subscription]]:
        return self.store.observe_subscriptions(SubscriptionFilter(active=True))

    def observe_monthly_subscription_cost(self) -> LiveQuery[Decimal]:
        """Live total monthly-equivalent cost of active subscriptions."""
        return self._active_subscriptions().map(total_monthly_cost)

    def observe_annual_subscription_cost(self) -> LiveQuery[Decimal]:
        """Live total annual-equivalent cost of active subscriptions."""
        return self._active_subscriptions().map(total_annual_cost)

    def observe_active_subscription_count(self) -> LiveQuery[int]:
        return self._active_subscriptions().map(len)

    def observe_frequency_breakdown(self) -> LiveQuery[list[FrequencyBreakdown]]:
        """Live count and total amount of active subscriptions per frequency."""
        return self._active_subscriptions().map(frequency_breakdown)

    def observe_expenses_by_category(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> LiveQuery[dict[str, Decimal]]:
        """Live expense totals per category within a date range."""
        filters = TransactionFilter(account_id=account_id, start_date=start_date, end_date=end_date)
        return self.store.observe_transactions(filters).map(expenses_by_category)

    async def expenses_by_category(
        self, start_date: date, end_date: date, account_id: Optional[EntityId] = None
    ) -> dict[str, Decimal]:
        return await self.observe_expenses_by_category(start_date, end_date, account_id).first()

    async def month_summary(self, year: int, month: int, account_id: Optional[EntityId] = None) -> MonthSummary:
        """Income, expenses and net for one calendar month."""
        start_date, end_date = month_bounds(year, month)
        income = await self.store.observe_income_total(start_date, end_date, account_id).first()
        expenses = await self.store.observe_expense_total(start_date, end_date, account_id).first()
        return MonthSummary(year=year, month=month, income=income, expenses=expenses)
