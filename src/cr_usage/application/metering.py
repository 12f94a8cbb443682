"""UsageMeter: debits credits for a feature invocation before it runs.

Flow for one invocation, identified by a caller-generated request_id:
  1. charge: debit_usage of -cost, idempotency_key = "usage:<request_id>",
     external_ref = feature. InsufficientBalance stops here; the provider
     is never called.
  2. the OCR / refine provider runs
  3. if the provider raises FeatureProviderError the debit is reversed by a
     refund (idempotency_key = "refund:usage:<request_id>", external_ref =
     request_id) and the error is re-raised

A charge whose outcome is unknown (LedgerUnavailableError) is retried only
after a lookup of its key shows nothing was committed. Refunds are
idempotent and retried directly.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.enums import EntryKind, Feature
from src.cr_common.errors import (
    AppError,
    FeatureProviderError,
    IdempotencyConflictError,
    UsageChargeNotFoundError,
)
from src.cr_common.retry import ledger_retrying
from src.cr_ledger.application.engine import LedgerEngine
from src.cr_ledger.domain.models import ApplyResult, FeatureUsage, LedgerOperation
from src.cr_usage.domain.features import default_costs, refund_key, usage_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UsageMeter:
    def __init__(
        self,
        engine: LedgerEngine,
        costs: dict[Feature, int] | None = None,
        retry_attempts: int | None = None,
    ) -> None:
        self._engine = engine
        self._costs = costs if costs is not None else default_costs()
        self._retry_attempts = retry_attempts

    def cost_of(self, feature: Feature) -> int:
        return self._costs[feature]

    @property
    def costs(self) -> dict[Feature, int]:
        return dict(self._costs)

    async def charge(
        self, db: AsyncSession, account_id: str, feature: Feature, request_id: str
    ) -> ApplyResult:
        op = LedgerOperation(
            account_id=account_id,
            amount=-self.cost_of(feature),
            kind=EntryKind.DEBIT_USAGE,
            idempotency_key=usage_key(request_id),
            external_ref=feature.value,
            description=f"{feature.value} usage",
        )
        async for attempt in ledger_retrying(self._retry_attempts):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    recorded = await self._engine.find_entry(db, op.idempotency_key)
                    if recorded is not None:
                        if not op.matches(recorded):
                            raise IdempotencyConflictError(op.idempotency_key)
                        logger.info("charge %s committed before the failure, not retried", request_id)
                        return ApplyResult(entry=recorded, replayed=True)
                return await self._engine.apply(db, op)
        raise AssertionError("unreachable: ledger_retrying reraises")

    async def refund(self, db: AsyncSession, account_id: str, request_id: str) -> ApplyResult:
        debit = await self._engine.find_entry(db, usage_key(request_id))
        if (
            debit is None
            or debit.account_id != account_id
            or debit.kind != EntryKind.DEBIT_USAGE.value
        ):
            raise UsageChargeNotFoundError(request_id)

        op = LedgerOperation(
            account_id=account_id,
            amount=-debit.amount,
            kind=EntryKind.REFUND,
            idempotency_key=refund_key(request_id),
            external_ref=request_id,
            description=f"Refund for failed {debit.external_ref}",
        )
        async for attempt in ledger_retrying(self._retry_attempts):
            with attempt:
                return await self._engine.apply(db, op)
        raise AssertionError("unreachable: ledger_retrying reraises")

    async def run_metered(
        self,
        db: AsyncSession,
        account_id: str,
        feature: Feature,
        request_id: str,
        call: Callable[[], Awaitable[T]],
    ) -> tuple[T, ApplyResult]:
        """Charge, run the provider call, refund if it confirmably failed."""
        charge = await self.charge(db, account_id, feature, request_id)
        if charge.replayed and await self._engine.find_entry(db, refund_key(request_id)):
            # This request already failed and was refunded; a retry needs a new request_id
            raise IdempotencyConflictError(usage_key(request_id))

        try:
            result = await call()
        except FeatureProviderError:
            logger.info("%s failed for %s, refunding %s", feature.value, account_id, request_id)
            try:
                await self.refund(db, account_id, request_id)
            except AppError as refund_exc:
                logger.error(
                    "refund for request %s failed (%s); retry via the refund endpoint",
                    request_id, refund_exc.message,
                )
            raise
        return result, charge

    async def usage_summary(self, db: AsyncSession, account_id: str) -> list[FeatureUsage]:
        """Per-feature usage, every metered feature listed even when unused."""
        await self._engine.get_account(db, account_id)
        recorded = {u.feature: u for u in await self._engine.feature_usage(db, account_id)}
        return [
            recorded.get(f.value, FeatureUsage(feature=f.value, invocations=0, refunds=0, credits_used=0))
            for f in Feature
        ]
