"""Repository and provider Protocols for cr_payment.

Transaction ownership: repository methods run inside the caller's
transaction; the application layer commits.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_payment.domain.models import CheckoutSession, CreditPackage, PendingPurchase


class PackageCatalogProtocol(Protocol):
    async def get_package(self, db: AsyncSession, package_id: str) -> CreditPackage | None: ...

    async def list_packages(self, db: AsyncSession) -> list[CreditPackage]:
        """Active packages in display order."""
        ...


class PendingPurchaseRepositoryProtocol(Protocol):
    async def insert(self, db: AsyncSession, pending: PendingPurchase) -> PendingPurchase: ...

    async def get_by_token(
        self, db: AsyncSession, payment_session_token: str
    ) -> PendingPurchase | None: ...

    async def set_status(
        self,
        db: AsyncSession,
        payment_session_token: str,
        status: str,
        failure_reason: str | None = None,
    ) -> PendingPurchase | None:
        """Move a purchase to `status`. A COMPLETED purchase is never changed.

        Returns None when no purchase matched.
        """
        ...

    async def expire_stale(self, db: AsyncSession, account_id: str, now: datetime) -> int:
        """Mark the account's PENDING purchases past expires_at as EXPIRED."""
        ...


class PaymentProvider(Protocol):
    async def create_checkout(
        self,
        account_id: str,
        amount: int,
        callback_url: str,
        invoice_number: str,
    ) -> CheckoutSession:
        """Open a checkout at the provider. Raises PaymentProviderError."""
        ...
