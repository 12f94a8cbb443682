"""Credits REST API: balance, dashboard, history, entry lookup.

All endpoints require a bearer token from the hosted auth backend. No
endpoint here mutates a balance except account opening (welcome grant),
which goes through LedgerEngine like every other mutation.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.database import get_db_session
from src.cr_common.enums import EntryKind
from src.cr_common.response import ApiResponse, success_response
from src.cr_gateway.auth.dependencies import get_current_account_id
from src.cr_ledger.application.container import balance_cache, ledger_engine
from src.cr_ledger.application.service import LedgerApplicationService

router = APIRouter(prefix="/credits", tags=["credits"])

_service = LedgerApplicationService(ledger_engine, balance_cache)


@router.post("/account")
async def open_account(
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.open_account(db, account_id)
    return success_response(data.model_dump(), request)


@router.get("/balance")
async def get_balance(
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_balance(db, account_id)
    return success_response(data.model_dump(), request)


@router.get("/dashboard")
async def get_dashboard(
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_dashboard(db, account_id)
    return success_response(data.model_dump(), request)


@router.get("/history")
async def list_history(
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    kind: EntryKind | None = Query(None, description="Filter by entry kind"),
) -> ApiResponse:
    data = await _service.list_history(
        db, account_id, cursor, limit, kind.value if kind else None
    )
    return success_response(data.model_dump(), request)


@router.get("/entries/{idempotency_key}")
async def get_entry(
    account_id: Annotated[str, Depends(get_current_account_id)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    idempotency_key: str = Path(..., max_length=128),
) -> ApiResponse:
    """Lets a client confirm whether an attempt with unknown outcome was recorded.

    Usage charges are keyed usage:<request_id>, their refunds
    refund:usage:<request_id>, purchases payment:<payment_id>.
    """
    item = await _service.get_entry(db, account_id, idempotency_key)
    return success_response(
        {"found": item is not None, "entry": item.model_dump() if item else None},
        request,
    )
