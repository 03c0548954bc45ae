"""Tests for subscription costs and spending summaries."""

from datetime import date
from decimal import Decimal

from conti.domain.entities import PaymentFrequency, Subscription, Transaction
from conti.domain.summary import (
    expenses_by_category,
    frequency_breakdown,
    month_bounds,
    total_annual_cost,
    total_monthly_cost,
)


def subscription(amount: str, frequency: PaymentFrequency, name: str = "Sub") -> Subscription:
    return Subscription(
        name=name,
        amount=Decimal(amount),
        frequency=frequency,
        start_date=date(2025, 1, 1),
        next_renewal_date=date(2025, 4, 1),
        account_id=1,
    )


def txn(amount: str, category: str, day: date = date(2025, 3, 1), account_id=1) -> Transaction:
    return Transaction(account_id=account_id, date=day, amount=Decimal(amount), category=category)


class TestPureHelpers:
    def test_month_bounds(self):
        assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_bounds(2025, 12) == (date(2025, 12, 1), date(2025, 12, 31))

    def test_totals(self):
        subscriptions = [
            subscription("12.99", PaymentFrequency.MONTHLY),
            subscription("12.99", PaymentFrequency.QUARTERLY),
            subscription("120.00", PaymentFrequency.ANNUAL),
        ]
        assert total_monthly_cost(subscriptions) == Decimal("27.32")
        assert total_annual_cost(subscriptions) == Decimal("327.84")

    def test_empty_totals(self):
        assert total_monthly_cost([]) == Decimal("0.00")
        assert frequency_breakdown([]) == []

    def test_frequency_breakdown_in_frequency_order(self):
        breakdown = frequency_breakdown(
            [
                subscription("50.00", PaymentFrequency.ANNUAL),
                subscription("9.99", PaymentFrequency.MONTHLY),
                subscription("5.01", PaymentFrequency.MONTHLY),
            ]
        )
        assert [(b.frequency, b.count, b.total) for b in breakdown] == [
            (PaymentFrequency.MONTHLY, 2, Decimal("15.00")),
            (PaymentFrequency.ANNUAL, 1, Decimal("50.00")),
        ]

    def test_expenses_by_category_largest_first(self):
        totals = expenses_by_category(
            [
                txn("-10.00", "Bar"),
                txn("-45.30", "Groceries"),
                txn("-2.50", "Bar"),
                txn("1500.00", "Salary"),
            ]
        )
        assert list(totals.items()) == [("Groceries", Decimal("45.30")), ("Bar", Decimal("12.50"))]


class TestStatisticsService:
    """Tests for StatisticsService against the SQLite store."""

    async def test_subscription_costs(self, repository, statistics, sample_subscription):
        assert await statistics.observe_active_subscription_count().first() == 1
        assert await statistics.observe_monthly_subscription_cost().first() == Decimal("12.99")
        assert await statistics.observe_annual_subscription_cost().first() == Decimal("155.88")

        await repository.deactivate_subscription(sample_subscription.id)
        assert await statistics.observe_active_subscription_count().first() == 0
        assert await statistics.observe_monthly_subscription_cost().first() == Decimal("0.00")

    async def test_live_monthly_cost(self, repository, statistics, sample_subscription):
        async with statistics.observe_monthly_subscription_cost().subscribe() as costs:
            assert await costs.receive(2.0) == Decimal("12.99")
            await repository.create_subscription(
                Subscription(
                    name="Spotify",
                    amount=Decimal("10.99"),
                    frequency=PaymentFrequency.MONTHLY,
                    start_date=date(2025, 1, 1),
                    next_renewal_date=date(2025, 4, 1),
                    account_id=sample_subscription.account_id,
                )
            )
            assert await costs.receive(2.0) == Decimal("23.98")

    async def test_month_summary(self, repository, statistics, sample_account):
        for amount, category, day in (
            ("1500.00", "Salary", date(2025, 3, 1)),
            ("-45.30", "Groceries", date(2025, 3, 4)),
            ("-12.00", "Bar", date(2025, 3, 31)),
            ("-99.00", "Travel", date(2025, 4, 1)),
        ):
            await repository.record_transaction(
                Transaction(account_id=sample_account.id, date=day, amount=Decimal(amount), category=category)
            )

        summary = await statistics.month_summary(2025, 3)
        assert summary.income == Decimal("1500.00")
        assert summary.expenses == Decimal("57.30")
        assert summary.net == Decimal("1442.70")

        categories = await statistics.expenses_by_category(date(2025, 3, 1), date(2025, 3, 31))
        assert list(categories) == ["Groceries", "Bar"]
