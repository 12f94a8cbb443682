"""Usage REST API: debit before a feature runs, refund when it fails.

The web app calls /charge with a fresh request_id before invoking OCR or
text refinement and /refund with the same request_id if the provider
failed. Both are safe to repeat.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.database import get_db_session
from src.cr_common.enums import Feature
from src.cr_common.response import ApiResponse, success_response
from src.cr_gateway.auth.dependencies import get_current_account_id
from src.cr_ledger.application.container import ledger_engine
from src.cr_ledger.application.schemas import ApplyResponse
from src.cr_usage.application.metering import UsageMeter
from src.cr_usage.application.schemas import (
    ChargeRequest,
    ChargeResponse,
    FeatureUsageItem,
    RefundRequest,
    UsageSummaryResponse,
)

router = APIRouter(prefix="/usage", tags=["usage"])

_meter = UsageMeter(ledger_engine)


@router.post("/charge")
async def charge(
    body: ChargeRequest,
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    result = await _meter.charge(db, account_id, body.feature, body.request_id)
    data = ChargeResponse.from_charge(result, body.feature, _meter.cost_of(body.feature))
    return success_response(data.model_dump(), request)


@router.post("/refund")
async def refund(
    body: RefundRequest,
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    result = await _meter.refund(db, account_id, body.request_id)
    return success_response(ApplyResponse.from_result(result).model_dump(), request)


@router.get("/summary")
async def summary(
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    usages = await _meter.usage_summary(db, account_id)
    items = [FeatureUsageItem.from_domain(u, _meter.cost_of(Feature(u.feature))) for u in usages]
    data = UsageSummaryResponse(
        features=items,
        total_credits_used=sum(i.credits_used for i in items),
    )
    return success_response(data.model_dump(mode="json"), request)
