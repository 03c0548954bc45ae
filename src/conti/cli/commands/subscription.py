"""Subscription management commands."""

import click

from conti.cli.runner import run
from conti.domain.entities import DEFAULT_SUBSCRIPTION_CATEGORY, PaymentFrequency, Subscription
from conti.utils.account_resolver import parse_id, resolve_account
from conti.utils.amount_parser import parse_amount
from conti.utils.date_parser import parse_date

STATUS_FILTERS = {"all": None, "active": True, "ended": False}


@click.group()
def subscription_group():
    """Manage recurring subscriptions."""
    pass


@subscription_group.command("add")
@click.argument("account", metavar="ACCOUNT")
@click.argument("name")
@click.argument("amount")
@click.option(
    "--frequency",
    type=click.Choice([f.name for f in PaymentFrequency], case_sensitive=False),
    default=PaymentFrequency.MONTHLY.name,
    show_default=True,
)
@click.option("--start-date", default="today", help="First day of the subscription")
@click.option("--next-renewal", help="Next renewal date (default: one period after the start)")
@click.option("--category", default=DEFAULT_SUBSCRIPTION_CATEGORY, show_default=True)
@click.option("--description", help="Description")
@click.option("--notes", help="Notes")
@click.pass_context
def add_subscription(
    ctx,
    account: str,
    name: str,
    amount: str,
    frequency: str,
    start_date: str,
    next_renewal: str | None,
    category: str,
    description: str | None,
    notes: str | None,
) -> None:
    """Add a subscription charged to ACCOUNT.

    Examples:
        conti subscription add "Conto Corrente" Netflix 12,99
        conti subscription add 1 "Amazon Prime" 49.90 --frequency ANNUAL --start-date 2025-02-01
    """

    async def operation(repository):
        account_id = await resolve_account(repository, account)
        payment_frequency = PaymentFrequency[frequency.upper()]
        start = parse_date(start_date)
        renewal = parse_date(next_renewal) if next_renewal else payment_frequency.next_renewal_after(start)
        subscription = Subscription(
            name=name,
            amount=parse_amount(amount),
            frequency=payment_frequency,
            start_date=start,
            next_renewal_date=renewal,
            account_id=account_id,
            description=description,
            category=category,
            notes=notes,
        )
        return await repository.create_subscription(subscription)

    subscription_id = run(ctx, operation)
    click.echo(f"Created subscription '{name}' (ID: {subscription_id})")


@subscription_group.command("list")
@click.option(
    "--status", type=click.Choice(list(STATUS_FILTERS)), default="all", show_default=True
)
@click.option("--account", help="Account name or ID")
@click.pass_context
def list_subscriptions(ctx, status: str, account: str | None) -> None:
    """List subscriptions with their monthly cost."""

    async def operation(repository):
        account_id = await resolve_account(repository, account) if account else None
        return await repository.list_subscriptions(active=STATUS_FILTERS[status], account_id=account_id)

    subscriptions = run(ctx, operation)
    if not subscriptions:
        click.echo("No subscriptions found.")
        return

    for sub in subscriptions:
        when = f"renews {sub.next_renewal_date.isoformat()}" if sub.active else f"ended {sub.end_date.isoformat()}"
        click.echo(
            f"{str(sub.id):>4s} | {sub.name:20s} | {sub.amount:>8.2f} {sub.frequency.name:10s} | "
            f"{sub.monthly_cost:>7.2f}/month | {when}"
        )


@subscription_group.command("deactivate")
@click.argument("subscription_id")
@click.option("--end-date", help="Last day of the subscription (default: today)")
@click.pass_context
def deactivate_subscription(ctx, subscription_id: str, end_date: str | None) -> None:
    """End a subscription, keeping its history."""

    async def operation(repository):
        await repository.deactivate_subscription(
            parse_id(subscription_id), parse_date(end_date) if end_date else None
        )

    run(ctx, operation)
    click.echo(f"Deactivated subscription {subscription_id}")


@subscription_group.command("reactivate")
@click.argument("subscription_id")
@click.pass_context
def reactivate_subscription(ctx, subscription_id: str) -> None:
    """Make an ended subscription active again."""
    run(ctx, lambda repository: repository.reactivate_subscription(parse_id(subscription_id)))
    click.echo(f"Reactivated subscription {subscription_id}")


@subscription_group.command("renew")
@click.argument("subscription_id")
@click.option("--on", "on_date", help="Charge date (default: the due renewal date)")
@click.pass_context
def renew_subscription(ctx, subscription_id: str, on_date: str | None) -> None:
    """Charge one period of a subscription and advance its renewal date."""

    async def operation(repository):
        return await repository.process_subscription_renewal(
            parse_id(subscription_id), parse_date(on_date) if on_date else None
        )

    transaction_id = run(ctx, operation)
    click.echo(f"Renewed subscription {subscription_id} (transaction {transaction_id})")


@subscription_group.command("delete")
@click.argument("subscription_id")
@click.pass_context
def delete_subscription(ctx, subscription_id: str) -> None:
    """Delete a subscription. Its past charges are kept."""
    run(ctx, lambda repository: repository.delete_subscription(parse_id(subscription_id)))
    click.echo(f"Deleted subscription {subscription_id}")


def register_commands(cli):
    """Register subscription commands with main CLI."""
    cli.add_command(subscription_group, name="subscription")
