"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.cr_common.database import engine
from src.cr_common.errors import AppError
from src.cr_common.redis_client import close_redis, get_redis
from src.cr_common.response import error_response
from src.cr_gateway.middleware.request_log import RequestLogMiddleware
from src.cr_ledger.api.router import router as credits_router
from src.cr_payment.api.router import router as payments_router
from src.cr_usage.api.router import router as usage_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

# Seconds a client should wait before repeating a retryable request
_RETRY_AFTER_SECONDS = "1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis connections. Shutdown: dispose."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    redis = await get_redis()
    await redis.ping()
    yield
    # Shutdown
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, exc.retryable)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    headers = {"Retry-After": _RETRY_AFTER_SECONDS} if exc.retryable else None
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
        headers=headers,
    )


app.include_router(credits_router, prefix="/api/v1")
app.include_router(payments_router, prefix="/api/v1")
app.include_router(usage_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
