"""Utility for resolving account names to IDs."""

from conti.domain.entities import EntityId
from conti.domain.errors import NotFoundError
from conti.domain.repository import Repository


def parse_id(value: str) -> EntityId:
    """Integer-looking identifiers are relational ids; anything else is a document key."""
    value = value.strip()
    return int(value) if value.isdigit() else value


async def resolve_account(repository: Repository, account: str) -> EntityId:
    """Resolve account name or ID to account ID.

    Raises:
        NotFoundError: If no account has that ID or name
    """
    account_id = parse_id(account)
    if await repository.get_account(account_id) is not None:
        return account_id

    for candidate in await repository.list_accounts():
        if candidate.name == account:
            return candidate.id

    raise NotFoundError(f"Account '{account}' not found")
