"""Request / response schemas for the payments API."""

from pydantic import BaseModel, Field

from src.cr_common.display import credits_to_display, taka_to_display
from src.cr_common.enums import PaymentStatus
from src.cr_payment.domain.models import CreditPackage, ReconciliationResult, StartedPurchase


class PurchaseRequest(BaseModel):
    package_id: str = Field(..., min_length=1, max_length=32)
    callback_url: str = Field(..., min_length=1, max_length=500)


class CallbackRequest(BaseModel):
    """Payment result as forwarded by the provider callback handler."""

    payment_id: str = Field(..., min_length=1, max_length=128)
    status: PaymentStatus
    package_id: str | None = Field(None, max_length=32)
    account_id: str | None = Field(None, max_length=64)


class PackageResponse(BaseModel):
    package_id: str
    name: str
    credits: int
    bonus_credits: int
    granted_credits: int
    granted_display: str
    price: int
    price_display: str
    description: str | None
    is_popular: bool

    @classmethod
    def from_domain(cls, package: CreditPackage) -> "PackageResponse":
        return cls(
            package_id=package.package_id,
            name=package.name,
            credits=package.credits,
            bonus_credits=package.bonus_credits,
            granted_credits=package.granted_credits,
            granted_display=credits_to_display(package.granted_credits),
            price=package.price,
            price_display=taka_to_display(package.price),
            description=package.description,
            is_popular=package.is_popular,
        )


class PurchaseResponse(BaseModel):
    purchase_id: str
    payment_id: str
    package_id: str
    credits: int
    price: int
    status: str
    expires_at: str | None
    redirect_url: str

    @classmethod
    def from_domain(cls, started: StartedPurchase) -> "PurchaseResponse":
        pending = started.pending
        return cls(
            purchase_id=pending.purchase_id,
            payment_id=pending.payment_session_token,
            package_id=pending.package_id,
            credits=pending.credits,
            price=pending.price,
            status=pending.status,
            expires_at=pending.expires_at.isoformat() if pending.expires_at else None,
            redirect_url=started.redirect_url,
        )


class ReconciliationResponse(BaseModel):
    payment_id: str
    status: str
    credits_added: int
    balance_after: int | None
    replayed: bool

    @classmethod
    def from_domain(cls, result: ReconciliationResult) -> "ReconciliationResponse":
        return cls(
            payment_id=result.payment_id,
            status=result.status,
            credits_added=result.credits_added,
            balance_after=result.balance_after,
            replayed=result.replayed,
        )
