"""Repository Protocol: dependency inversion for testability.

Unit tests inject a fake that conforms to this Protocol.
Infrastructure layer provides the real PostgreSQL implementation.

Transaction ownership: every method runs inside the caller's transaction.
LedgerEngine is the only caller allowed to use the mutating methods and it
owns commit / rollback.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_ledger.domain.models import Account, FeatureUsage, LedgerEntry


class LedgerRepositoryProtocol(Protocol):
    async def get_account(self, db: AsyncSession, account_id: str) -> Account | None: ...

    async def create_account(self, db: AsyncSession, account_id: str) -> Account:
        """Insert the account with balance 0 if missing; return the stored row."""
        ...

    async def set_account_active(
        self, db: AsyncSession, account_id: str, active: bool
    ) -> Account | None: ...

    async def apply_delta(
        self, db: AsyncSession, account_id: str, amount: int
    ) -> Account | None:
        """Atomically add `amount` to an active account's balance and bump version.

        Returns None when the account is missing, inactive, or the result
        would be negative. Nothing is changed in that case.
        """
        ...

    async def append_entry(self, db: AsyncSession, entry: LedgerEntry) -> LedgerEntry | None:
        """Append an entry. Returns None if its idempotency_key already exists."""
        ...

    async def find_entry_by_key(
        self, db: AsyncSession, idempotency_key: str
    ) -> LedgerEntry | None: ...

    async def list_entries(
        self,
        db: AsyncSession,
        account_id: str,
        cursor_version: int | None,
        limit: int,
        kind: str | None,
    ) -> list[LedgerEntry]:
        """Entries newest first (by account_version), strictly below the cursor."""
        ...

    async def latest_entry(self, db: AsyncSession, account_id: str) -> LedgerEntry | None: ...

    async def sum_amounts(self, db: AsyncSession, account_id: str) -> int: ...

    async def feature_usage(self, db: AsyncSession, account_id: str) -> list[FeatureUsage]: ...
