"""LedgerEngine: the single authority for credit balance mutations.

apply() guarantees, per ledger operation:
  - exactly-once: an idempotency_key already recorded returns the recorded
    entry and writes nothing
  - no negative balance: the debit check and the balance update are one
    conditional UPDATE
  - atomicity: entry append, balance update and version bump commit together
    or not at all
  - no lost update: operations on one account are serialized, in-process by a
    striped asyncio.Lock and across processes by the row lock the UPDATE takes

The engine owns the transaction of every mutation it performs: the session
callers pass in must carry no uncommitted writes, since apply() commits or
rolls back whatever is pending on it.
"""

import asyncio
import logging
import zlib

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cr_common.database import storage_guard
from src.cr_common.datetime_utils import utc_now
from src.cr_common.enums import EntryKind
from src.cr_common.errors import (
    AccountInactiveError,
    AccountNotFoundError,
    AppError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InternalError,
    InvalidAmountError,
)
from src.cr_common.id_generator import generate_entry_id
from src.cr_ledger.domain.cache import BalanceCache
from src.cr_ledger.domain.events import BalanceChanged, BalanceEventPublisher
from src.cr_ledger.domain.invariants import verify_account
from src.cr_ledger.domain.models import (
    Account,
    ApplyResult,
    FeatureUsage,
    LedgerEntry,
    LedgerOperation,
)
from src.cr_ledger.domain.repository import LedgerRepositoryProtocol
from src.cr_ledger.infrastructure.persistence import LedgerRepository

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


def validate_operation(op: LedgerOperation) -> None:
    """Sign rules: purchase > 0, debit_usage < 0, refund > 0, adjustment != 0."""
    amount = op.amount
    valid = {
        EntryKind.PURCHASE: amount > 0,
        EntryKind.DEBIT_USAGE: amount < 0,
        EntryKind.REFUND: amount > 0,
        EntryKind.ADJUSTMENT: amount != 0,
    }[op.kind]
    if not valid:
        raise InvalidAmountError(op.kind.value, amount)
    if not op.idempotency_key:
        raise InternalError("idempotency_key must not be empty")


class LedgerEngine:
    def __init__(
        self,
        repo: LedgerRepositoryProtocol | None = None,
        cache: BalanceCache | None = None,
        publisher: BalanceEventPublisher | None = None,
        low_balance_threshold: int | None = None,
    ) -> None:
        self._repo: LedgerRepositoryProtocol = repo or LedgerRepository()
        self._cache = cache
        self._publisher = publisher
        self._low_balance_threshold = (
            settings.LOW_BALANCE_THRESHOLD
            if low_balance_threshold is None
            else low_balance_threshold
        )
        self._locks = [asyncio.Lock() for _ in range(_LOCK_STRIPES)]

    @property
    def repo(self) -> LedgerRepositoryProtocol:
        return self._repo

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        return self._locks[zlib.crc32(account_id.encode()) % _LOCK_STRIPES]

    # ------------------------------------------------------------------
    # apply
    # ------------------------------------------------------------------

    async def apply(self, db: AsyncSession, op: LedgerOperation) -> ApplyResult:
        validate_operation(op)
        async with self._lock_for(op.account_id):
            result = await self._apply_serialized(db, op)
        if not result.replayed:
            await self._after_commit(result.entry)
        return result

    async def _apply_serialized(self, db: AsyncSession, op: LedgerOperation) -> ApplyResult:
        try:
            with storage_guard():
                existing = await self._repo.find_entry_by_key(db, op.idempotency_key)
                if existing is not None:
                    await db.rollback()
                    return self._replay(op, existing)

                account = await self._repo.apply_delta(db, op.account_id, op.amount)
                if account is None:
                    raise await self._rejection(db, op)

                entry = LedgerEntry(
                    entry_id=generate_entry_id(),
                    account_id=op.account_id,
                    kind=op.kind.value,
                    amount=op.amount,
                    balance_after=account.balance,
                    account_version=account.version,
                    idempotency_key=op.idempotency_key,
                    external_ref=op.external_ref,
                    description=op.description,
                    created_at=utc_now(),
                )
                stored = await self._repo.append_entry(db, entry)
                if stored is None:
                    # A concurrent apply with the same key committed first
                    await db.rollback()
                    winner = await self._repo.find_entry_by_key(db, op.idempotency_key)
                    if winner is None:
                        raise InternalError(
                            f"idempotency key {op.idempotency_key} conflicted but no entry found"
                        )
                    await db.rollback()
                    return self._replay(op, winner)

                await db.commit()
        except Exception:
            await self._rollback_quietly(db)
            raise

        logger.info(
            "ledger apply %s account=%s amount=%+d balance_after=%d key=%s",
            stored.kind, stored.account_id, stored.amount, stored.balance_after,
            stored.idempotency_key,
        )
        return ApplyResult(entry=stored, replayed=False)

    def _replay(self, op: LedgerOperation, existing: LedgerEntry) -> ApplyResult:
        if not op.matches(existing):
            logger.warning(
                "idempotency key %s reused: recorded %s %+d on %s, requested %s %+d on %s",
                op.idempotency_key, existing.kind, existing.amount, existing.account_id,
                op.kind.value, op.amount, op.account_id,
            )
            raise IdempotencyConflictError(op.idempotency_key)
        logger.info(
            "ledger replay key=%s account=%s balance_after=%d",
            op.idempotency_key, op.account_id, existing.balance_after,
        )
        return ApplyResult(entry=existing, replayed=True)

    async def _rejection(self, db: AsyncSession, op: LedgerOperation) -> AppError:
        account = await self._repo.get_account(db, op.account_id)
        if account is None:
            return AccountNotFoundError(op.account_id)
        if not account.is_active:
            return AccountInactiveError(op.account_id)
        logger.info(
            "ledger rejected %s account=%s amount=%+d balance=%d",
            op.kind.value, op.account_id, op.amount, account.balance,
        )
        return InsufficientBalanceError(required=-op.amount, available=account.balance)

    async def _rollback_quietly(self, db: AsyncSession) -> None:
        try:
            await db.rollback()
        except Exception as exc:  # connection already gone; the original error wins
            logger.warning("rollback failed: %s", exc)

    async def _after_commit(self, entry: LedgerEntry) -> None:
        if self._cache is not None:
            await self._cache.invalidate(entry.account_id)
        if self._publisher is not None:
            await self._publisher.publish(
                BalanceChanged.from_entry(entry, self._low_balance_threshold)
            )

    # ------------------------------------------------------------------
    # Lookups and account lifecycle
    # ------------------------------------------------------------------

    async def find_entry(self, db: AsyncSession, idempotency_key: str) -> LedgerEntry | None:
        with storage_guard():
            return await self._repo.find_entry_by_key(db, idempotency_key)

    async def get_account(self, db: AsyncSession, account_id: str) -> Account:
        with storage_guard():
            account = await self._repo.get_account(db, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    async def open_account(
        self, db: AsyncSession, account_id: str, welcome_grant: int | None = None
    ) -> Account:
        """Create the account if missing. Safe to call on every login."""
        grant = settings.WELCOME_GRANT_CREDITS if welcome_grant is None else welcome_grant
        try:
            with storage_guard():
                await self._repo.create_account(db, account_id)
                await db.commit()
        except Exception:
            await self._rollback_quietly(db)
            raise

        if grant > 0:
            await self.apply(
                db,
                LedgerOperation(
                    account_id=account_id,
                    amount=grant,
                    kind=EntryKind.ADJUSTMENT,
                    idempotency_key=f"welcome:{account_id}",
                    description="Welcome credits",
                ),
            )
        return await self.get_account(db, account_id)

    async def deactivate_account(self, db: AsyncSession, account_id: str) -> Account:
        async with self._lock_for(account_id):
            try:
                with storage_guard():
                    account = await self._repo.set_account_active(db, account_id, False)
                    if account is None:
                        raise AccountNotFoundError(account_id)
                    await db.commit()
            except Exception:
                await self._rollback_quietly(db)
                raise
        logger.info("account deactivated: %s", account_id)
        if self._cache is not None:
            await self._cache.invalidate(account_id)
        return account

    async def feature_usage(self, db: AsyncSession, account_id: str) -> list[FeatureUsage]:
        with storage_guard():
            return await self._repo.feature_usage(db, account_id)

    async def verify_account(self, db: AsyncSession, account_id: str) -> list[str]:
        with storage_guard():
            return await verify_account(self._repo, db, account_id)
