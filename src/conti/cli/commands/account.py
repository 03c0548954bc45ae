"""Account management commands."""

import click

from conti.cli.runner import run
from conti.domain.entities import Account, AccountKind, AccountSource
from conti.utils.account_resolver import resolve_account
from conti.utils.amount_parser import parse_amount
from conti.utils.date_parser import parse_date


@click.group()
def account_group():
    """Manage accounts."""
    pass


@account_group.command("create")
@click.argument("name", metavar="ACCOUNT_NAME")
@click.option(
    "--kind",
    type=click.Choice([kind.value for kind in AccountKind], case_sensitive=False),
    default=AccountKind.OTHER.value,
    show_default=True,
    help="Account kind",
)
@click.option("--opening-balance", default="0", help="Opening balance (e.g. 1.234,56 or 1234.56)")
@click.option("--currency", default="EUR", show_default=True, help="ISO 4217 currency code")
@click.option("--iban", help="IBAN (spaces allowed)")
@click.option("--institution", help="Bank or card issuer")
@click.option("--imported", is_flag=True, help="Mark the account as fed by file imports")
@click.pass_context
def create_account(
    ctx,
    name: str,
    kind: str,
    opening_balance: str,
    currency: str,
    iban: str | None,
    institution: str | None,
    imported: bool,
):
    """Create a new account.

    Examples:
        conti account create "Conto Corrente" --kind PRIMARY_BANK --opening-balance 1500
        conti account create "Hype" --kind CARD_WALLET --iban "IT60 X054 2811 1010 0000 0123 456"
    """

    async def operation(repository):
        account = Account(
            name=name,
            kind=AccountKind.parse(kind),
            opening_balance=parse_amount(opening_balance),
            currency=currency.upper(),
            iban=iban,
            institution=institution,
            source=AccountSource.IMPORTED if imported else AccountSource.MANUAL,
        )
        return await repository.create_account(account)

    account_id = run(ctx, operation)
    click.echo(f"Created account '{name}' (ID: {account_id})")


@account_group.command("list")
@click.option(
    "--source",
    type=click.Choice([source.value for source in AccountSource], case_sensitive=False),
    help="Only accounts with this source",
)
@click.pass_context
def list_accounts(ctx, source: str | None):
    """List all accounts with their balances."""

    async def operation(repository):
        accounts = await repository.list_accounts(AccountSource(source.upper()) if source else None)
        return [(account, await repository.get_balance(account.id)) for account in accounts]

    rows = run(ctx, operation)
    if not rows:
        click.echo("No accounts found.")
        return

    click.echo("\nAccounts:")
    click.echo("-" * 72)
    for acc, balance in rows:
        click.echo(
            f"ID: {str(acc.id):>3s} | {acc.name:20s} | {acc.kind.value:12s} | "
            f"{balance:>12.2f} {acc.currency}"
        )


@account_group.command("balance")
@click.argument("account", metavar="ACCOUNT")
@click.option("--as-of", help="Balance at the end of this date (YYYY-MM-DD, DD/MM/YYYY or 'yesterday')")
@click.pass_context
def account_balance(ctx, account: str, as_of: str | None):
    """Show the balance of an account.

    ACCOUNT can be an account name or ID.

    Examples:
        conti account balance "Conto Corrente"
        conti account balance 1 --as-of 31/12/2024
    """

    async def operation(repository):
        account_id = await resolve_account(repository, account)
        acc = await repository.get_account(account_id)
        if as_of:
            balance = await repository.get_balance_as_of(account_id, parse_date(as_of))
        else:
            balance = await repository.get_balance(account_id)
        return acc, balance

    acc, balance = run(ctx, operation)
    suffix = f" as of {parse_date(as_of).isoformat()}" if as_of else ""
    click.echo(f"{acc.name}: {balance:.2f} {acc.currency}{suffix}")


@account_group.command("delete")
@click.argument("account", metavar="ACCOUNT")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete_account(ctx, account: str, yes: bool) -> None:
    """Delete an account with all of its transactions and subscriptions.

    ACCOUNT can be an account name or ID.

    Examples:
        conti account delete "Hype"
        conti account delete 2 --yes
    """
    account_id = run(ctx, lambda repository: resolve_account(repository, account))

    if not yes and not click.confirm(
        f"Delete account {account_id} together with its transactions and subscriptions?"
    ):
        click.echo("Deletion cancelled.")
        return

    run(ctx, lambda repository: repository.delete_account(account_id))
    click.echo(f"Deleted account {account_id}")


def register_commands(cli):
    """Register account commands with main CLI."""
    cli.add_command(account_group, name="account")
