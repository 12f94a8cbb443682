"""LedgerApplicationService: read side of the credits API.

Balance reads are cache-aside over BalanceCache and may be up to one TTL
stale; every mutation goes through LedgerEngine, which invalidates the
cache after commit. History and dashboard reads go straight to PostgreSQL.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cr_common.database import storage_guard
from src.cr_ledger.application.engine import LedgerEngine
from src.cr_ledger.application.schemas import (
    AccountResponse,
    BalanceResponse,
    DashboardResponse,
    HistoryResponse,
    LedgerEntryItem,
    cursor_decode,
    cursor_encode,
)
from src.cr_ledger.domain.cache import BalanceCache

_DASHBOARD_RECENT = 5


class LedgerApplicationService:
    def __init__(self, engine: LedgerEngine, cache: BalanceCache | None = None) -> None:
        self._engine = engine
        self._repo = engine.repo
        self._cache = cache

    async def open_account(self, db: AsyncSession, account_id: str) -> AccountResponse:
        account = await self._engine.open_account(db, account_id)
        return AccountResponse.from_domain(account)

    async def get_balance(self, db: AsyncSession, account_id: str) -> BalanceResponse:
        threshold = settings.LOW_BALANCE_THRESHOLD
        if self._cache is not None:
            cached = await self._cache.get(account_id)
            if cached is not None:
                return BalanceResponse.from_balance(account_id, cached, threshold)

        account = await self._engine.get_account(db, account_id)
        if self._cache is not None:
            # May land after a concurrent apply's invalidate; the TTL bounds that staleness
            await self._cache.put(account_id, account.balance)
        return BalanceResponse.from_balance(account_id, account.balance, threshold)

    async def get_dashboard(self, db: AsyncSession, account_id: str) -> DashboardResponse:
        balance = await self.get_balance(db, account_id)
        with storage_guard():
            entries = await self._repo.list_entries(
                db, account_id, None, _DASHBOARD_RECENT, None
            )
        return DashboardResponse(
            balance=balance,
            recent_entries=[LedgerEntryItem.from_domain(e) for e in entries],
        )

    async def list_history(
        self,
        db: AsyncSession,
        account_id: str,
        cursor: str | None,
        limit: int,
        kind: str | None,
    ) -> HistoryResponse:
        cursor_version = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        with storage_guard():
            entries = await self._repo.list_entries(
                db, account_id, cursor_version, limit + 1, kind
            )
        has_more = len(entries) > limit
        page = entries[:limit]

        next_cursor = cursor_encode(page[-1].account_version) if has_more and page else None
        return HistoryResponse(
            items=[LedgerEntryItem.from_domain(e) for e in page],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def get_entry(
        self, db: AsyncSession, account_id: str, idempotency_key: str
    ) -> LedgerEntryItem | None:
        """Entry lookup scoped to the caller's own account."""
        entry = await self._engine.find_entry(db, idempotency_key)
        if entry is None or entry.account_id != account_id:
            return None
        return LedgerEntryItem.from_domain(entry)
