"""Tests for the conti command line."""

from conti.cli.main import cli


def invoke(cli_runner, db_path, *args, **kwargs):
    return cli_runner.invoke(cli, ["--db-path", db_path, "--owner", "cli-tests", *args], **kwargs)


def create_account(cli_runner, db_path, name="Conto Corrente", opening_balance="1.500,00"):
    result = invoke(
        cli_runner, db_path, "account", "create", name, "--kind", "PRIMARY_BANK", "--opening-balance", opening_balance
    )
    assert result.exit_code == 0, result.output
    return result


def test_help_does_not_need_a_store(cli_runner):
    result = cli_runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "personal finance tracker" in result.output


def test_account_create(cli_runner, db_path):
    """Test creating an account."""
    result = create_account(cli_runner, db_path)
    assert "Created account 'Conto Corrente'" in result.output
    assert "ID:" in result.output


def test_account_list_empty(cli_runner, db_path):
    """Test listing accounts when none exist."""
    result = invoke(cli_runner, db_path, "account", "list")
    assert result.exit_code == 0
    assert "No accounts found." in result.output


def test_account_list_with_balance(cli_runner, db_path):
    create_account(cli_runner, db_path)
    result = invoke(cli_runner, db_path, "account", "list")
    assert result.exit_code == 0
    assert "Conto Corrente" in result.output
    assert "1500.00 EUR" in result.output


def test_account_create_invalid_iban(cli_runner, db_path):
    result = invoke(cli_runner, db_path, "account", "create", "Hype", "--iban", "IT00 1234")
    assert result.exit_code == 1
    assert "Invalid IBAN" in result.output


def test_transaction_updates_balance(cli_runner, db_path):
    """Recorded transactions move the account balance."""
    create_account(cli_runner, db_path)

    result = invoke(
        cli_runner, db_path, "transaction", "add", "Conto Corrente", "--date", "2025-03-04",
        "--category", "Groceries", "--", "-42,30",
    )
    assert result.exit_code == 0, result.output
    assert "Recorded transaction" in result.output

    result = invoke(cli_runner, db_path, "account", "balance", "Conto Corrente")
    assert result.exit_code == 0
    assert "Conto Corrente: 1457.70 EUR" in result.output

    result = invoke(cli_runner, db_path, "account", "balance", "1", "--as-of", "03/03/2025")
    assert result.exit_code == 0
    assert "Conto Corrente: 1500.00 EUR as of 2025-03-03" in result.output


def test_transaction_unknown_account(cli_runner, db_path):
    result = invoke(cli_runner, db_path, "transaction", "add", "Ghost", "10")
    assert result.exit_code == 1
    assert "Error: Account 'Ghost' not found" in result.output


def test_transaction_list_and_delete(cli_runner, db_path):
    create_account(cli_runner, db_path)
    invoke(cli_runner, db_path, "transaction", "add", "1", "--date", "2025-03-01", "--description", "Stipendio", "1500")
    invoke(cli_runner, db_path, "transaction", "add", "1", "--date", "2025-04-01", "--description", "April", "10")

    result = invoke(
        cli_runner, db_path, "transaction", "list", "--start-date", "2025-03-01", "--end-date", "2025-03-31"
    )
    assert result.exit_code == 0
    assert "Stipendio" in result.output
    assert "April" not in result.output

    result = invoke(cli_runner, db_path, "transaction", "delete", "1")
    assert result.exit_code == 0
    assert "Deleted transaction 1 (1500.00 on 2025-03-01)" in result.output

    result = invoke(cli_runner, db_path, "transaction", "delete", "1")
    assert result.exit_code == 1
    assert "Transaction 1 not found" in result.output


def test_subscription_lifecycle(cli_runner, db_path):
    """Add, renew and end a subscription."""
    create_account(cli_runner, db_path)

    result = invoke(
        cli_runner, db_path, "subscription", "add", "Conto Corrente", "Netflix", "12,99", "--start-date", "2025-01-10"
    )
    assert result.exit_code == 0, result.output
    assert "Created subscription 'Netflix' (ID: 1)" in result.output

    result = invoke(cli_runner, db_path, "subscription", "list", "--status", "active")
    assert "Netflix" in result.output
    assert "renews 2025-02-10" in result.output

    result = invoke(cli_runner, db_path, "summary", "subscriptions")
    assert result.exit_code == 0
    assert "Active subscriptions: 1" in result.output
    assert "Monthly cost: 12.99" in result.output
    assert "Annual cost: 155.88" in result.output

    result = invoke(cli_runner, db_path, "subscription", "renew", "1")
    assert result.exit_code == 0, result.output
    result = invoke(cli_runner, db_path, "account", "balance", "Conto Corrente")
    assert "1487.01 EUR" in result.output

    result = invoke(cli_runner, db_path, "subscription", "deactivate", "1", "--end-date", "2025-03-31")
    assert result.exit_code == 0
    result = invoke(cli_runner, db_path, "subscription", "list", "--status", "ended")
    assert "ended 2025-03-31" in result.output

    result = invoke(cli_runner, db_path, "subscription", "renew", "1")
    assert result.exit_code == 1
    assert "not active" in result.output


def test_month_summary(cli_runner, db_path):
    create_account(cli_runner, db_path)
    invoke(cli_runner, db_path, "transaction", "add", "1", "--date", "2025-03-01", "--category", "Salary", "2000")
    invoke(cli_runner, db_path, "transaction", "add", "1", "--date", "2025-03-05", "--category", "Groceries", "--", "-80")

    result = invoke(cli_runner, db_path, "summary", "month", "2025-03")
    assert result.exit_code == 0, result.output
    assert "2025-03" in result.output
    assert "2000.00" in result.output
    assert "80.00" in result.output
    assert "Groceries" in result.output


def test_account_delete_needs_confirmation(cli_runner, db_path):
    create_account(cli_runner, db_path)

    result = invoke(cli_runner, db_path, "account", "delete", "Conto Corrente", input="n\n")
    assert "Deletion cancelled." in result.output

    result = invoke(cli_runner, db_path, "account", "delete", "Conto Corrente", "--yes")
    assert result.exit_code == 0
    assert "Deleted account 1" in result.output

    result = invoke(cli_runner, db_path, "account", "list")
    assert "No accounts found." in result.output


def test_owners_do_not_see_each_other(cli_runner, db_path):
    create_account(cli_runner, db_path)
    result = cli_runner.invoke(cli, ["--db-path", db_path, "--owner", "someone-else", "account", "list"])
    assert result.exit_code == 0
    assert "No accounts found." in result.output
