"""Domain models for cr_payment: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime

from src.cr_common.enums import PendingPurchaseStatus


@dataclass(frozen=True)
class CreditPackage:
    package_id: str
    name: str
    credits: int
    bonus_credits: int
    price: int                 # whole BDT
    description: str | None = None
    is_popular: bool = False
    is_active: bool = True
    sort_order: int = 0

    @property
    def granted_credits(self) -> int:
        return self.credits + self.bonus_credits


@dataclass
class PendingPurchase:
    purchase_id: str
    account_id: str
    package_id: str
    credits: int               # credits to grant, bonus included
    price: int
    payment_session_token: str # provider payment id
    status: str = PendingPurchaseStatus.PENDING.value
    failure_reason: str | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CheckoutSession:
    """What the payment provider returns when a checkout is created."""

    payment_id: str
    redirect_url: str


@dataclass(frozen=True)
class StartedPurchase:
    pending: PendingPurchase
    redirect_url: str


@dataclass(frozen=True)
class ReconciliationResult:
    payment_id: str
    status: str                # PendingPurchaseStatus value after reconciliation
    credits_added: int
    balance_after: int | None  # None when no ledger operation ran
    replayed: bool = False


def purchase_key(payment_id: str) -> str:
    """Idempotency key of the purchase entry granted for one provider payment."""
    return f"payment:{payment_id}"
