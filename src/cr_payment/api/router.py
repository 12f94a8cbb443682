"""Payments REST API: pricing, purchase start, provider callback.

The callback endpoint is authenticated by the shared webhook secret, not a
user token. It answers 503 with retryable=true when the ledger is
unavailable so that the provider re-delivers.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.database import get_db_session
from src.cr_common.response import ApiResponse, success_response
from src.cr_gateway.auth.dependencies import get_current_account_id, require_webhook_secret
from src.cr_ledger.application.container import ledger_engine
from src.cr_payment.application.purchase import PurchaseService
from src.cr_payment.application.reconciliation import PaymentReconciliationAdapter
from src.cr_payment.application.schemas import (
    CallbackRequest,
    PackageResponse,
    PurchaseRequest,
    PurchaseResponse,
    ReconciliationResponse,
)
from src.cr_payment.infrastructure.bkash import BkashPaymentProvider

router = APIRouter(prefix="/payments", tags=["payments"])

_purchases = PurchaseService(ledger_engine, BkashPaymentProvider())
_reconciler = PaymentReconciliationAdapter(ledger_engine)


@router.get("/packages")
async def list_packages(
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    packages = await _purchases.list_packages(db)
    return success_response(
        {"packages": [PackageResponse.from_domain(p).model_dump() for p in packages]},
        request,
    )


@router.post("/purchase")
async def start_purchase(
    body: PurchaseRequest,
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    started = await _purchases.start_purchase(db, account_id, body.package_id, body.callback_url)
    return success_response(PurchaseResponse.from_domain(started).model_dump(), request)


@router.post("/callback", dependencies=[Depends(require_webhook_secret)])
async def payment_callback(
    body: CallbackRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    result = await _reconciler.reconcile_callback(
        db, body.payment_id, body.status, body.package_id, body.account_id
    )
    return success_response(ReconciliationResponse.from_domain(result).model_dump(), request)
