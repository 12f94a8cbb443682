"""PaymentReconciliationAdapter: turns a payment callback into a purchase entry.

One callback, one ledger operation: the purchase entry is keyed
"payment:<payment_id>" with the raw payment id as external_ref, so a callback
delivered twice grants credits once. No "already processed" flag is
consulted; the ledger is the only record of whether credits were granted.

The pending purchase is bookkeeping. It is moved to COMPLETED only after the
ledger confirmed the purchase (fresh or replayed), in its own transaction,
and a failure to update it never undoes or hides the credit grant. A success
callback the ledger refuses (inactive or unknown account, key conflict) leaves
the pending purchase FAILED with the reason, so the paid row is kept for
investigation instead of expiring.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.database import storage_guard
from src.cr_common.enums import EntryKind, PaymentStatus, PendingPurchaseStatus
from src.cr_common.errors import (
    AppError,
    LedgerUnavailableError,
    PackageNotFoundError,
    PendingPurchaseNotFoundError,
)
from src.cr_common.retry import ledger_retrying
from src.cr_ledger.application.engine import LedgerEngine
from src.cr_ledger.domain.models import ApplyResult, LedgerOperation
from src.cr_payment.domain.models import (
    PendingPurchase,
    ReconciliationResult,
    purchase_key,
)
from src.cr_payment.domain.repository import (
    PackageCatalogProtocol,
    PendingPurchaseRepositoryProtocol,
)
from src.cr_payment.infrastructure.persistence import PackageCatalog, PendingPurchaseRepository

logger = logging.getLogger(__name__)


class PaymentReconciliationAdapter:
    def __init__(
        self,
        engine: LedgerEngine,
        catalog: PackageCatalogProtocol | None = None,
        pending_repo: PendingPurchaseRepositoryProtocol | None = None,
        retry_attempts: int | None = None,
    ) -> None:
        self._engine = engine
        self._catalog: PackageCatalogProtocol = catalog or PackageCatalog()
        self._pending: PendingPurchaseRepositoryProtocol = pending_repo or PendingPurchaseRepository()
        self._retry_attempts = retry_attempts

    async def reconcile(
        self,
        db: AsyncSession,
        payment_id: str,
        package_id: str,
        account_id: str,
        status: PaymentStatus = PaymentStatus.SUCCESS,
    ) -> ReconciliationResult:
        if status != PaymentStatus.SUCCESS:
            final = (
                PendingPurchaseStatus.CANCELLED
                if status == PaymentStatus.CANCEL
                else PendingPurchaseStatus.FAILED
            )
            logger.info("payment %s reported %s, no credits granted", payment_id, status.value)
            await self._mark(db, payment_id, final, f"provider reported {status.value}")
            return ReconciliationResult(
                payment_id=payment_id,
                status=final.value,
                credits_added=0,
                balance_after=None,
            )

        with storage_guard():
            package = await self._catalog.get_package(db, package_id)
            await db.rollback()
        if package is None:
            logger.error(
                "purchase could not be completed: payment %s for %s names unknown package %s",
                payment_id, account_id, package_id,
            )
            await self._mark(
                db, payment_id, PendingPurchaseStatus.FAILED, f"unknown package {package_id}"
            )
            raise PackageNotFoundError(package_id)

        op = LedgerOperation(
            account_id=account_id,
            amount=package.granted_credits,
            kind=EntryKind.PURCHASE,
            idempotency_key=purchase_key(payment_id),
            external_ref=payment_id,
            description=f"{package.name} package",
        )
        try:
            result = await self._apply_with_retry(db, op)
        except LedgerUnavailableError:
            raise
        except AppError as exc:
            logger.error(
                "purchase could not be completed: payment %s for %s refused by the ledger: %s",
                payment_id, account_id, exc.message,
            )
            await self._fail(db, payment_id, exc.message)
            raise

        await self._complete(db, payment_id)
        return ReconciliationResult(
            payment_id=payment_id,
            status=PendingPurchaseStatus.COMPLETED.value,
            credits_added=result.entry.amount,
            balance_after=result.balance_after,
            replayed=result.replayed,
        )

    async def reconcile_callback(
        self,
        db: AsyncSession,
        payment_id: str,
        status: PaymentStatus,
        package_id: str | None = None,
        account_id: str | None = None,
    ) -> ReconciliationResult:
        """Reconcile a webhook delivery, filling package and account from the pending purchase.

        The pending purchase recorded at checkout wins over values in the
        callback body.
        """
        with storage_guard():
            pending = await self._pending.get_by_token(db, payment_id)
            await db.rollback()
        if pending is not None:
            if (package_id and package_id != pending.package_id) or (
                account_id and account_id != pending.account_id
            ):
                logger.warning(
                    "callback for %s disagrees with the pending purchase, using the pending purchase",
                    payment_id,
                )
            package_id, account_id = pending.package_id, pending.account_id
        elif not package_id or not account_id:
            raise PendingPurchaseNotFoundError(payment_id)

        return await self.reconcile(db, payment_id, package_id, account_id, status)

    async def _apply_with_retry(self, db: AsyncSession, op: LedgerOperation) -> ApplyResult:
        try:
            async for attempt in ledger_retrying(self._retry_attempts):
                with attempt:
                    return await self._engine.apply(db, op)
        except LedgerUnavailableError:
            logger.error(
                "payment %s not reconciled, ledger unavailable; provider should re-deliver",
                op.external_ref,
            )
            raise
        raise AssertionError("unreachable: ledger_retrying reraises")

    async def _complete(self, db: AsyncSession, payment_id: str) -> None:
        # The credits are granted at this point; a bookkeeping failure must not surface
        try:
            await self._mark(db, payment_id, PendingPurchaseStatus.COMPLETED, None)
        except LedgerUnavailableError as exc:
            logger.warning("pending purchase %s not marked COMPLETED: %s", payment_id, exc.message)

    async def _fail(self, db: AsyncSession, payment_id: str, reason: str) -> None:
        try:
            await self._mark(db, payment_id, PendingPurchaseStatus.FAILED, reason)
        except LedgerUnavailableError as exc:
            logger.warning("pending purchase %s not marked FAILED: %s", payment_id, exc.message)

    async def _mark(
        self,
        db: AsyncSession,
        payment_id: str,
        status: PendingPurchaseStatus,
        reason: str | None,
    ) -> PendingPurchase | None:
        try:
            with storage_guard():
                pending = await self._pending.set_status(db, payment_id, status.value, reason)
                await db.commit()
        except Exception:
            await db.rollback()
            raise
        if pending is None:
            logger.warning("no open pending purchase for payment %s", payment_id)
        return pending
