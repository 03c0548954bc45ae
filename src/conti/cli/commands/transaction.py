"""Transaction management commands."""

import click

from conti.cli.runner import run
from conti.database.filters import TransactionFilter
from conti.domain.entities import Transaction
from conti.utils.account_resolver import parse_id, resolve_account
from conti.utils.amount_parser import parse_amount
from conti.utils.date_parser import get_date_range, parse_date


@click.group()
def transaction_group():
    """Manage transactions."""
    pass


@transaction_group.command("add")
@click.argument("account", metavar="ACCOUNT")
@click.argument("amount", metavar="AMOUNT")
@click.option("--date", "date_str", default="today", help="Transaction date (YYYY-MM-DD, DD/MM/YYYY, 'today')")
@click.option("--description", default="", help="Transaction description")
@click.option("--category", default="", help="Category label")
@click.option("--notes", help="Notes")
@click.pass_context
def add_transaction(
    ctx, account: str, amount: str, date_str: str, description: str, category: str, notes: str | None
) -> None:
    """Record a transaction and update the account balance.

    AMOUNT is signed: negative for expenses, positive for income. Put it
    after "--" when negative.

    Examples:
        conti transaction add "Conto Corrente" 1500 --description "Stipendio" --category Salary
        conti transaction add 1 --date 05/03/2025 --category Groceries -- -42,30
    """

    async def operation(repository):
        account_id = await resolve_account(repository, account)
        transaction = Transaction(
            account_id=account_id,
            date=parse_date(date_str),
            amount=parse_amount(amount),
            description=description,
            category=category,
            notes=notes,
        )
        return await repository.record_transaction(transaction)

    transaction_id = run(ctx, operation)
    click.echo(f"Recorded transaction {transaction_id}")


@transaction_group.command("list")
@click.option("--account", help="Account name or ID")
@click.option("--start-date", help="First date to include")
@click.option("--end-date", help="Last date to include")
@click.option("--period", help="this-month, last-month, this-year or last-year")
@click.option("--category", help="Only this category")
@click.option("--recurring", is_flag=True, help="Only subscription charges")
@click.pass_context
def list_transactions(
    ctx,
    account: str | None,
    start_date: str | None,
    end_date: str | None,
    period: str | None,
    category: str | None,
    recurring: bool,
) -> None:
    """List transactions, most recent first.

    Examples:
        conti transaction list --account "Conto Corrente" --period this-month
        conti transaction list --start-date 2025-01-01 --end-date 2025-03-31 --category Groceries
    """

    async def operation(repository):
        if period:
            start, end = get_date_range(period)
        else:
            start = parse_date(start_date) if start_date else None
            end = parse_date(end_date) if end_date else None
        filters = TransactionFilter(
            account_id=await resolve_account(repository, account) if account else None,
            start_date=start,
            end_date=end,
            category=category,
            recurring=True if recurring else None,
        )
        return await repository.list_transactions(filters)

    transactions = run(ctx, operation)
    if not transactions:
        click.echo("No transactions found.")
        return

    for txn in transactions:
        click.echo(
            f"{str(txn.id):>5s} | {txn.date.isoformat()} | {txn.amount:>10.2f} | "
            f"{txn.category[:15]:15s} | {txn.description}"
        )


@transaction_group.command("delete")
@click.argument("transaction_id")
@click.pass_context
def delete_transaction(ctx, transaction_id: str) -> None:
    """Delete a transaction and reverse its effect on the balance."""
    removed = run(ctx, lambda repository: repository.delete_transaction(parse_id(transaction_id)))
    click.echo(f"Deleted transaction {transaction_id} ({removed.amount:.2f} on {removed.date.isoformat()})")


def register_commands(cli):
    """Register transaction commands with main CLI."""
    cli.add_command(transaction_group, name="transaction")
