"""HTTP surface: envelopes, status codes and error mapping.

Routers run against the in-memory repositories; the bearer dependency is
overridden with a fixed account id.
"""

from collections.abc import Iterator

import pytest
from httpx import AsyncClient

from config.settings import settings
from src.cr_common.database import get_db_session
from src.cr_common.enums import Feature
from src.cr_gateway.auth.dependencies import get_current_account_id
from src.cr_ledger.api import router as credits_api
from src.cr_ledger.application.engine import LedgerEngine
from src.cr_ledger.application.service import LedgerApplicationService
from src.cr_payment.api import router as payments_api
from src.cr_payment.application.purchase import PurchaseService
from src.cr_payment.application.reconciliation import PaymentReconciliationAdapter
from src.cr_usage.api import router as usage_api
from src.cr_usage.application.metering import UsageMeter
from src.main import app
from tests.unit.fakes import (
    FakeLedgerRepository,
    FakePackageCatalog,
    FakePaymentProvider,
    FakePendingPurchaseRepository,
    FakeSession,
)


@pytest.fixture
def repo(monkeypatch: pytest.MonkeyPatch) -> Iterator[FakeLedgerRepository]:
    repo = FakeLedgerRepository()
    engine = LedgerEngine(repo=repo)
    catalog = FakePackageCatalog()
    pending = FakePendingPurchaseRepository()

    monkeypatch.setattr(credits_api, "_service", LedgerApplicationService(engine))
    monkeypatch.setattr(
        usage_api,
        "_meter",
        UsageMeter(engine, costs={Feature.OCR_EXTRACT: 5, Feature.TEXT_REFINE: 2}, retry_attempts=2),
    )
    monkeypatch.setattr(
        payments_api,
        "_purchases",
        PurchaseService(engine, FakePaymentProvider("TR0011api"), catalog, pending),
    )
    monkeypatch.setattr(
        payments_api,
        "_reconciler",
        PaymentReconciliationAdapter(engine, catalog, pending, retry_attempts=2),
    )

    async def fake_session() -> FakeSession:
        return FakeSession()

    async def fixed_account() -> str:
        return "user-1"

    app.dependency_overrides[get_db_session] = fake_session
    app.dependency_overrides[get_current_account_id] = fixed_account
    yield repo
    app.dependency_overrides.clear()


async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


class TestCredits:
    async def test_balance_envelope(self, client: AsyncClient, repo: FakeLedgerRepository) -> None:
        repo.seed_account("user-1", 560)

        resp = await client.get("/api/v1/credits/balance")

        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == 0
        assert body["data"]["balance"] == 560
        assert body["data"]["balance_display"] == "560 credits"
        assert body["request_id"] == resp.headers["X-Request-ID"]

    async def test_unknown_account_is_404(
        self, client: AsyncClient, repo: FakeLedgerRepository
    ) -> None:
        resp = await client.get("/api/v1/credits/balance")

        assert resp.status_code == 404
        assert resp.json()["code"] == 2002
        assert resp.json()["data"] is None

    async def test_open_account(self, client: AsyncClient, repo: FakeLedgerRepository) -> None:
        resp = await client.post("/api/v1/credits/account")

        assert resp.status_code == 200
        assert resp.json()["data"]["account_id"] == "user-1"
        assert "user-1" in repo.accounts

    async def test_history_limit_is_validated(
        self, client: AsyncClient, repo: FakeLedgerRepository
    ) -> None:
        resp = await client.get("/api/v1/credits/history", params={"limit": 0})
        assert resp.status_code == 422

    async def test_entry_lookup(self, client: AsyncClient, repo: FakeLedgerRepository) -> None:
        repo.seed_account("user-1", 10)

        found = await client.get("/api/v1/credits/entries/seed:user-1")
        missing = await client.get("/api/v1/credits/entries/req-unknown")

        assert found.json()["data"]["found"] is True
        assert missing.json()["data"] == {"found": False, "entry": None}

    async def test_missing_token_is_401(self, client: AsyncClient, repo: FakeLedgerRepository) -> None:
        del app.dependency_overrides[get_current_account_id]

        resp = await client.get("/api/v1/credits/balance")

        assert resp.status_code == 401


class TestUsage:
    async def test_charge_then_refund(self, client: AsyncClient, repo: FakeLedgerRepository) -> None:
        repo.seed_account("user-1", 20)

        charged = await client.post(
            "/api/v1/usage/charge", json={"feature": "ocr_extract", "request_id": "req-1"}
        )
        refunded = await client.post("/api/v1/usage/refund", json={"request_id": "req-1"})

        assert charged.status_code == 200
        assert charged.json()["data"]["cost"] == 5
        assert charged.json()["data"]["balance_after"] == 15
        assert refunded.json()["data"]["balance_after"] == 20

    async def test_insufficient_balance_is_422(
        self, client: AsyncClient, repo: FakeLedgerRepository
    ) -> None:
        repo.seed_account("user-1", 3)

        resp = await client.post(
            "/api/v1/usage/charge", json={"feature": "ocr_extract", "request_id": "req-1"}
        )

        assert resp.status_code == 422
        assert resp.json()["code"] == 2001
        assert resp.json()["retryable"] is False

    async def test_unavailable_ledger_is_retryable_503(
        self, client: AsyncClient, repo: FakeLedgerRepository
    ) -> None:
        repo.seed_account("user-1", 20)
        repo.fail_on("apply_delta", ConnectionRefusedError(), ConnectionRefusedError())

        resp = await client.post(
            "/api/v1/usage/charge", json={"feature": "ocr_extract", "request_id": "req-1"}
        )

        assert resp.status_code == 503
        assert resp.json()["code"] == 9003
        assert resp.json()["retryable"] is True
        assert "Retry-After" in resp.headers

    async def test_unknown_feature_is_rejected(
        self, client: AsyncClient, repo: FakeLedgerRepository
    ) -> None:
        resp = await client.post(
            "/api/v1/usage/charge", json={"feature": "translate", "request_id": "req-1"}
        )
        assert resp.status_code == 422

    async def test_summary(self, client: AsyncClient, repo: FakeLedgerRepository) -> None:
        repo.seed_account("user-1", 20)
        await client.post(
            "/api/v1/usage/charge", json={"feature": "text_refine", "request_id": "req-1"}
        )

        resp = await client.get("/api/v1/usage/summary")

        data = resp.json()["data"]
        assert data["total_credits_used"] == 2
        assert {f["feature"] for f in data["features"]} == {"ocr_extract", "text_refine"}


class TestPayments:
    async def test_packages(self, client: AsyncClient, repo: FakeLedgerRepository) -> None:
        resp = await client.get("/api/v1/payments/packages")

        packages = resp.json()["data"]["packages"]
        assert [p["price_display"] for p in packages] == ["৳500", "৳2,000", "৳3,500"]
        assert packages[1]["granted_credits"] == 550

    async def test_purchase_then_callback(
        self, client: AsyncClient, repo: FakeLedgerRepository
    ) -> None:
        repo.seed_account("user-1", 10)

        started = await client.post(
            "/api/v1/payments/purchase",
            json={"package_id": "popular", "callback_url": "https://ocr.example.com/cb"},
        )
        payment_id = started.json()["data"]["payment_id"]
        callback = await client.post(
            "/api/v1/payments/callback",
            json={"payment_id": payment_id, "status": "success"},
            headers={"X-Webhook-Secret": settings.PAYMENT_WEBHOOK_SECRET},
        )
        duplicate = await client.post(
            "/api/v1/payments/callback",
            json={"payment_id": payment_id, "status": "success"},
            headers={"X-Webhook-Secret": settings.PAYMENT_WEBHOOK_SECRET},
        )

        assert started.json()["data"]["redirect_url"].endswith("TR0011api")
        assert callback.json()["data"]["balance_after"] == 560
        assert duplicate.json()["data"]["replayed"] is True
        assert repo.accounts["user-1"].balance == 560

    async def test_callback_requires_secret(
        self, client: AsyncClient, repo: FakeLedgerRepository
    ) -> None:
        resp = await client.post(
            "/api/v1/payments/callback", json={"payment_id": "TRX-1", "status": "success"}
        )

        assert resp.status_code == 401
        assert resp.json()["code"] == 1006

    async def test_callback_for_unknown_payment(
        self, client: AsyncClient, repo: FakeLedgerRepository
    ) -> None:
        resp = await client.post(
            "/api/v1/payments/callback",
            json={"payment_id": "TRX-404", "status": "success"},
            headers={"X-Webhook-Secret": settings.PAYMENT_WEBHOOK_SECRET},
        )

        assert resp.status_code == 404
        assert resp.json()["code"] == 3002
