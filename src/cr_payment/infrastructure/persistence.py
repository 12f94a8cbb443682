"""Concrete repositories for the package catalog and pending purchases.

The catalog is read-only and queried through the ORM mapping. Pending
purchases use raw SQL. The CALLER commits or rolls back.
"""

from datetime import datetime

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.enums import PendingPurchaseStatus
from src.cr_common.errors import InternalError
from src.cr_payment.domain.models import CreditPackage, PendingPurchase
from src.cr_payment.infrastructure.db_models import CreditPackageORM

# ---------------------------------------------------------------------------
# SQL: pending_purchases
# ---------------------------------------------------------------------------

_PENDING_COLUMNS = (
    "purchase_id, account_id, package_id, credits, price, payment_session_token, "
    "status, failure_reason, expires_at, created_at, updated_at"
)

_INSERT_PENDING_SQL = text(f"""
    INSERT INTO pending_purchases
        (purchase_id, account_id, package_id, credits, price,
         payment_session_token, status, expires_at)
    VALUES
        (:purchase_id, :account_id, :package_id, :credits, :price,
         :payment_session_token, :status, :expires_at)
    RETURNING {_PENDING_COLUMNS}
""")

_GET_PENDING_SQL = text(f"""
    SELECT {_PENDING_COLUMNS}
    FROM pending_purchases
    WHERE payment_session_token = :token
""")

_SET_STATUS_SQL = text(f"""
    UPDATE pending_purchases
    SET status = :status,
        failure_reason = :failure_reason,
        updated_at = NOW()
    WHERE payment_session_token = :token
      AND status <> :completed
    RETURNING {_PENDING_COLUMNS}
""")

_EXPIRE_STALE_SQL = text("""
    UPDATE pending_purchases
    SET status = :expired,
        updated_at = NOW()
    WHERE account_id = :account_id
      AND status = :pending
      AND expires_at < :now
""")


def _orm_to_package(model: CreditPackageORM) -> CreditPackage:
    return CreditPackage(
        package_id=model.package_id,
        name=model.name,
        credits=model.credits,
        bonus_credits=model.bonus_credits,
        price=model.price,
        description=model.description,
        is_popular=model.is_popular,
        is_active=model.is_active,
        sort_order=model.sort_order,
    )


def _row_to_pending(row: object) -> PendingPurchase:
    return PendingPurchase(
        purchase_id=row.purchase_id,  # type: ignore[attr-defined]
        account_id=row.account_id,  # type: ignore[attr-defined]
        package_id=row.package_id,  # type: ignore[attr-defined]
        credits=row.credits,  # type: ignore[attr-defined]
        price=row.price,  # type: ignore[attr-defined]
        payment_session_token=row.payment_session_token,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        failure_reason=row.failure_reason,  # type: ignore[attr-defined]
        expires_at=row.expires_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class PackageCatalog:
    async def get_package(self, db: AsyncSession, package_id: str) -> CreditPackage | None:
        model = await db.get(CreditPackageORM, package_id)
        return _orm_to_package(model) if model else None

    async def list_packages(self, db: AsyncSession) -> list[CreditPackage]:
        result = await db.execute(
            select(CreditPackageORM)
            .where(CreditPackageORM.is_active.is_(True))
            .order_by(CreditPackageORM.sort_order, CreditPackageORM.price)
        )
        return [_orm_to_package(m) for m in result.scalars().all()]


class PendingPurchaseRepository:
    async def insert(self, db: AsyncSession, pending: PendingPurchase) -> PendingPurchase:
        result = await db.execute(
            _INSERT_PENDING_SQL,
            {
                "purchase_id": pending.purchase_id,
                "account_id": pending.account_id,
                "package_id": pending.package_id,
                "credits": pending.credits,
                "price": pending.price,
                "payment_session_token": pending.payment_session_token,
                "status": pending.status,
                "expires_at": pending.expires_at,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Pending purchase insert for {pending.purchase_id} returned no row")
        return _row_to_pending(row)

    async def get_by_token(
        self, db: AsyncSession, payment_session_token: str
    ) -> PendingPurchase | None:
        result = await db.execute(_GET_PENDING_SQL, {"token": payment_session_token})
        row = result.fetchone()
        return _row_to_pending(row) if row else None

    async def set_status(
        self,
        db: AsyncSession,
        payment_session_token: str,
        status: str,
        failure_reason: str | None = None,
    ) -> PendingPurchase | None:
        result = await db.execute(
            _SET_STATUS_SQL,
            {
                "token": payment_session_token,
                "status": status,
                "failure_reason": failure_reason,
                "completed": PendingPurchaseStatus.COMPLETED.value,
            },
        )
        row = result.fetchone()
        return _row_to_pending(row) if row else None

    async def expire_stale(self, db: AsyncSession, account_id: str, now: datetime) -> int:
        result = await db.execute(
            _EXPIRE_STALE_SQL,
            {
                "account_id": account_id,
                "now": now,
                "pending": PendingPurchaseStatus.PENDING.value,
                "expired": PendingPurchaseStatus.EXPIRED.value,
            },
        )
        return result.rowcount  # type: ignore[attr-defined]
