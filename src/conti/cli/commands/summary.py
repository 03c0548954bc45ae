"""Summary commands."""

from datetime import date

import click

from conti.cli.runner import run
from conti.domain.summary import StatisticsService, month_bounds
from conti.utils.account_resolver import resolve_account
from conti.utils.date_parser import parse_month


@click.group()
def summary_group():
    """Show spending and subscription summaries."""
    pass


@summary_group.command("month")
@click.argument("month", required=False)
@click.option("--account", help="Account name or ID (default: all accounts)")
@click.pass_context
def month_summary(ctx, month: str | None, account: str | None) -> None:
    """Income, expenses and spending by category for a month.

    MONTH is YYYY-MM or MM/YYYY; the current month by default.

    Examples:
        conti summary month
        conti summary month 2025-03 --account "Conto Corrente"
    """

    async def operation(repository):
        today = date.today()
        year, month_number = parse_month(month) if month else (today.year, today.month)
        account_id = await resolve_account(repository, account) if account else None
        statistics = StatisticsService(repository.store)
        start_date, end_date = month_bounds(year, month_number)
        summary = await statistics.month_summary(year, month_number, account_id)
        categories = await statistics.expenses_by_category(start_date, end_date, account_id)
        return summary, categories

    summary, categories = run(ctx, operation)
    click.echo(f"\n{summary.year}-{summary.month:02d}")
    click.echo("-" * 40)
    click.echo(f"{'Income':20s} {summary.income:>12.2f}")
    click.echo(f"{'Expenses':20s} {summary.expenses:>12.2f}")
    click.echo(f"{'Net':20s} {summary.net:>12.2f}")
    if categories:
        click.echo("\nExpenses by category:")
        for category, total in categories.items():
            click.echo(f"  {category or '(none)':18s} {total:>12.2f}")


@summary_group.command("subscriptions")
@click.pass_context
def subscriptions_summary(ctx) -> None:
    """Cost of active subscriptions, overall and per frequency."""

    async def operation(repository):
        statistics = StatisticsService(repository.store)
        return (
            await statistics.observe_active_subscription_count().first(),
            await statistics.observe_monthly_subscription_cost().first(),
            await statistics.observe_annual_subscription_cost().first(),
            await statistics.observe_frequency_breakdown().first(),
        )

    count, monthly, annual, breakdown = run(ctx, operation)
    click.echo(f"Active subscriptions: {count}")
    click.echo(f"Monthly cost: {monthly:.2f}")
    click.echo(f"Annual cost: {annual:.2f}")
    for group in breakdown:
        click.echo(f"  {group.frequency.name:10s} {group.count:3d} | {group.total:>10.2f}")


def register_commands(cli):
    """Register summary commands with main CLI."""
    cli.add_command(summary_group, name="summary")
