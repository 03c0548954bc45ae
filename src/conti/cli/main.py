"""Main CLI entry point."""

import click

from conti.database.factories import create_repository
from conti.logging_config import setup_logging

# Import and register all commands at module level
from conti.cli.commands import account, subscription, summary, transaction

DEFAULT_CLI_OWNER = "local"


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides CONTI_DB_PATH environment variable)",
    envvar="CONTI_DB_PATH",
)
@click.option(
    "--backend",
    type=click.Choice(["sqlite", "firestore"], case_sensitive=False),
    default="sqlite",
    show_default=True,
    help="Backing store",
    envvar="CONTI_BACKEND",
)
@click.option(
    "--owner",
    default=DEFAULT_CLI_OWNER,
    show_default=True,
    help="Owner whose data is accessed",
    envvar="CONTI_OWNER_ID",
)
@click.option("--project", help="Google Cloud project for the firestore backend", envvar="CONTI_FIRESTORE_PROJECT")
@click.option("--log-level", help="Application log level", envvar="CONTI_LOG_LEVEL")
@click.pass_context
def cli(ctx, db_path: str | None, backend: str, owner: str, project: str | None, log_level: str | None):
    """Conti - personal finance tracker.

    Keep track of bank accounts, their transactions and recurring
    subscriptions, with balances and spending summaries.
    """
    ctx.ensure_object(dict)
    setup_logging(app_log_level=log_level)

    # Build the repository only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        ctx.obj["repository"] = create_repository(
            backend=backend, database_path=db_path, owner_id=owner, project=project
        )


# Register all commands
account.register_commands(cli)
transaction.register_commands(cli)
subscription.register_commands(cli)
summary.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
