"""Run repository coroutines from synchronous click commands."""

import asyncio
from typing import Awaitable, Callable, TypeVar

import click

from conti.cli.error_handling import handle_domain_error
from conti.domain.errors import DomainError
from conti.domain.repository import Repository

T = TypeVar("T")


def run(ctx: click.Context, operation: Callable[[Repository], Awaitable[T]]) -> T:
    """Run an operation against the context's repository in a fresh event loop.

    The store is initialized before and closed after the operation. Domain
    errors are rendered and end the command with exit code 1.
    """
    repository: Repository = ctx.obj["repository"]

    async def session() -> T:
        await repository.initialize()
        try:
            return await operation(repository)
        finally:
            await repository.close()

    try:
        return asyncio.run(session())
    except DomainError as e:
        handle_domain_error(ctx, e)
