"""Integration-test fixtures.

Need PostgreSQL with migrations applied (`alembic upgrade head`) and Redis,
both as configured in .env. Everything here is skipped when the database is
unreachable.

All integration tests share a single event-loop so that the module-level
SQLAlchemy async engine pool and Redis pool (both created at import time)
remain valid across the entire test session.
"""

import time
import uuid
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import text

from config.settings import settings
from src.cr_common.database import engine
from src.main import app

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture(loop_scope="session", scope="session", autouse=True)
async def _require_database() -> None:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1 FROM ledger_entries LIMIT 1"))
    except Exception as exc:  # any connect or schema failure means no usable database
        pytest.skip(f"PostgreSQL with migrated schema not available: {exc}")


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def client() -> AsyncIterator[AsyncClient]:  # type: ignore[override]
    """Session-scoped async HTTP client: keeps the engine pool alive."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def account_id() -> str:
    """A fresh account per test; ledger rows are append-only and never cleaned up."""
    return f"it-{uuid.uuid4().hex[:16]}"


@pytest.fixture
def auth_headers(account_id: str) -> dict[str, str]:
    claims: dict[str, object] = {"sub": account_id, "exp": int(time.time()) + 600}
    if settings.AUTH_JWT_AUDIENCE:
        claims["aud"] = settings.AUTH_JWT_AUDIENCE
    token = jwt.encode(claims, settings.AUTH_JWT_SECRET, algorithm=settings.AUTH_JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}
