"""PurchaseService: pricing catalog and the start of the bKash purchase flow."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cr_common.database import storage_guard
from src.cr_common.datetime_utils import minutes_from_now, utc_now
from src.cr_common.errors import AccountInactiveError, PackageNotFoundError
from src.cr_common.id_generator import generate_entry_id
from src.cr_ledger.application.engine import LedgerEngine
from src.cr_payment.domain.models import CreditPackage, PendingPurchase, StartedPurchase
from src.cr_payment.domain.repository import (
    PackageCatalogProtocol,
    PaymentProvider,
    PendingPurchaseRepositoryProtocol,
)
from src.cr_payment.infrastructure.persistence import PackageCatalog, PendingPurchaseRepository

logger = logging.getLogger(__name__)


class PurchaseService:
    def __init__(
        self,
        engine: LedgerEngine,
        provider: PaymentProvider,
        catalog: PackageCatalogProtocol | None = None,
        pending_repo: PendingPurchaseRepositoryProtocol | None = None,
    ) -> None:
        self._engine = engine
        self._provider = provider
        self._catalog: PackageCatalogProtocol = catalog or PackageCatalog()
        self._pending: PendingPurchaseRepositoryProtocol = pending_repo or PendingPurchaseRepository()

    async def list_packages(self, db: AsyncSession) -> list[CreditPackage]:
        with storage_guard():
            return await self._catalog.list_packages(db)

    async def start_purchase(
        self,
        db: AsyncSession,
        account_id: str,
        package_id: str,
        callback_url: str,
    ) -> StartedPurchase:
        # Unknown or deactivated accounts never reach the provider
        account = await self._engine.get_account(db, account_id)
        if not account.is_active:
            raise AccountInactiveError(account_id)

        try:
            with storage_guard():
                expired = await self._pending.expire_stale(db, account_id, utc_now())
                package = await self._catalog.get_package(db, package_id)
                await db.commit()
        except Exception:
            await db.rollback()
            raise
        if expired:
            logger.info("expired %d stale pending purchase(s) for %s", expired, account_id)
        if package is None or not package.is_active:
            raise PackageNotFoundError(package_id)

        purchase_id = generate_entry_id()
        checkout = await self._provider.create_checkout(
            account_id=account_id,
            amount=package.price,
            callback_url=callback_url,
            invoice_number=f"INV{purchase_id}",
        )

        pending = PendingPurchase(
            purchase_id=purchase_id,
            account_id=account_id,
            package_id=package.package_id,
            credits=package.granted_credits,
            price=package.price,
            payment_session_token=checkout.payment_id,
            expires_at=minutes_from_now(settings.PENDING_PURCHASE_TTL_MINUTES),
        )
        try:
            with storage_guard():
                stored = await self._pending.insert(db, pending)
                await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "purchase started: account=%s package=%s payment_id=%s",
            account_id, package.package_id, checkout.payment_id,
        )
        return StartedPurchase(pending=stored, redirect_url=checkout.redirect_url)
