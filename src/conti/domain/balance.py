"""Balance domain service."""

from datetime import date
from decimal import Decimal
from typing import Optional

from conti.database.base import Store
from conti.database.live import LiveQuery
from conti.domain.entities import EntityId, to_cents
from conti.domain.errors import NotFoundError, account_not_found


class BalanceEngine:
    """Derives account balances from the opening balance and transactions.

    The opening balance is read once when a live balance is subscribed and
    is not watched afterwards; only transaction changes re-emit.
    """

    def __init__(self, store: Store):
        """Initialize balance engine.

        Args:
            store: Store instance
        """
        self.store = store

    async def _opening_balance(self, account_id: EntityId) -> Decimal:
        account = await self.store.get_account(account_id)
        if account is None:
            raise NotFoundError(account_not_found(account_id))
        return account.opening_balance

    def _balance(self, account_id: EntityId, until: Optional[date]) -> LiveQuery[Decimal]:
        return self.store.observe_transaction_sum(account_id, until).seeded(
            lambda: self._opening_balance(account_id),
            lambda opening, total: to_cents(opening + total),
        )

    def observe_balance(self, account_id: EntityId) -> LiveQuery[Decimal]:
        """Live balance: opening balance plus the sum of all transactions."""
        return self._balance(account_id, None)

    def observe_balance_as_of(self, account_id: EntityId, as_of: date) -> LiveQuery[Decimal]:
        """Live balance counting only transactions dated on or before as_of."""
        return self._balance(account_id, as_of)

    async def get_balance(self, account_id: EntityId) -> Decimal:
        """Current balance of an account.

        Raises:
            NotFoundError: If the account does not exist
        """
        return await self.observe_balance(account_id).first()

    async def get_balance_as_of(self, account_id: EntityId, as_of: date) -> Decimal:
        """Balance of an account at the end of the given day."""
        return await self.observe_balance_as_of(account_id, as_of).first()
