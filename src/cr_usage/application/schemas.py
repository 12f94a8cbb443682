"""Request / response schemas for the usage API."""

from pydantic import BaseModel, Field

from src.cr_common.enums import Feature
from src.cr_ledger.application.schemas import ApplyResponse
from src.cr_ledger.domain.models import ApplyResult, FeatureUsage


class ChargeRequest(BaseModel):
    feature: Feature
    request_id: str = Field(..., min_length=1, max_length=120)


class RefundRequest(BaseModel):
    request_id: str = Field(..., min_length=1, max_length=120)


class ChargeResponse(ApplyResponse):
    feature: Feature
    cost: int

    @classmethod
    def from_charge(cls, result: ApplyResult, feature: Feature, cost: int) -> "ChargeResponse":
        base = ApplyResponse.from_result(result)
        return cls(**base.model_dump(), feature=feature, cost=cost)


class FeatureUsageItem(BaseModel):
    feature: str
    cost: int
    invocations: int
    refunds: int
    credits_used: int

    @classmethod
    def from_domain(cls, usage: FeatureUsage, cost: int) -> "FeatureUsageItem":
        return cls(
            feature=usage.feature,
            cost=cost,
            invocations=usage.invocations,
            refunds=usage.refunds,
            credits_used=usage.credits_used,
        )


class UsageSummaryResponse(BaseModel):
    features: list[FeatureUsageItem]
    total_credits_used: int
