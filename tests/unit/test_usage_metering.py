"""UsageMeter: debit before the feature runs, refund when it fails."""

import pytest

from src.cr_common.enums import Feature
from src.cr_common.errors import (
    FeatureProviderError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    LedgerUnavailableError,
    UsageChargeNotFoundError,
)
from src.cr_ledger.application.engine import LedgerEngine
from src.cr_usage.application.metering import UsageMeter
from tests.unit.fakes import FakeLedgerRepository, FakeSession

_COSTS = {Feature.OCR_EXTRACT: 5, Feature.TEXT_REFINE: 2}


@pytest.fixture
def repo() -> FakeLedgerRepository:
    return FakeLedgerRepository()


@pytest.fixture
def engine(repo: FakeLedgerRepository) -> LedgerEngine:
    return LedgerEngine(repo=repo)


@pytest.fixture
def meter(engine: LedgerEngine) -> UsageMeter:
    return UsageMeter(engine, costs=_COSTS, retry_attempts=3)


class TestCharge:
    async def test_charge_debits_feature_cost(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)

        result = await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")

        assert result.balance_after == 15
        assert result.entry.kind == "debit_usage"
        assert result.entry.external_ref == "ocr_extract"
        assert result.entry.idempotency_key == "usage:req-1"

    async def test_repeated_charge_debits_once(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)
        await meter.charge(FakeSession(), "user-1", Feature.TEXT_REFINE, "req-1")

        again = await meter.charge(FakeSession(), "user-1", Feature.TEXT_REFINE, "req-1")

        assert again.replayed is True
        assert repo.accounts["user-1"].balance == 18

    async def test_request_id_reused_for_other_feature_conflicts(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)
        await meter.charge(FakeSession(), "user-1", Feature.TEXT_REFINE, "req-1")

        with pytest.raises(IdempotencyConflictError):
            await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")

    async def test_unknown_outcome_is_confirmed_before_retry(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)
        db = FakeSession()
        # The commit lands but the client never hears back
        db.raise_after_commit = True
        db.commit_errors.append(ConnectionResetError())

        result = await meter.charge(db, "user-1", Feature.OCR_EXTRACT, "req-1")

        assert result.replayed is True
        assert result.balance_after == 15
        assert repo.accounts["user-1"].balance == 15
        assert len(repo.entries_for("user-1")) == 2

    async def test_uncommitted_attempt_is_retried(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)
        repo.fail_on("apply_delta", ConnectionRefusedError())

        result = await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")

        assert result.replayed is False
        assert repo.accounts["user-1"].balance == 15

    async def test_gives_up_after_retry_budget(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)
        repo.fail_on("apply_delta", *(ConnectionRefusedError() for _ in range(3)))

        with pytest.raises(LedgerUnavailableError):
            await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")
        assert repo.accounts["user-1"].balance == 20

    async def test_insufficient_balance_is_not_retried(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 3)

        with pytest.raises(InsufficientBalanceError):
            await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")


class TestRefund:
    async def test_refund_restores_charged_amount(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)
        await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")

        result = await meter.refund(FakeSession(), "user-1", "req-1")

        assert result.entry.kind == "refund"
        assert result.entry.amount == 5
        assert result.entry.idempotency_key == "refund:usage:req-1"
        assert result.entry.external_ref == "req-1"
        assert result.balance_after == 20

    async def test_refund_twice_credits_once(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)
        await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")
        await meter.refund(FakeSession(), "user-1", "req-1")

        again = await meter.refund(FakeSession(), "user-1", "req-1")

        assert again.replayed is True
        assert repo.accounts["user-1"].balance == 20

    async def test_refund_without_charge(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)

        with pytest.raises(UsageChargeNotFoundError):
            await meter.refund(FakeSession(), "user-1", "req-missing")

    async def test_refund_of_another_accounts_charge(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)
        repo.seed_account("user-2", 20)
        await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")

        with pytest.raises(UsageChargeNotFoundError):
            await meter.refund(FakeSession(), "user-2", "req-1")
        assert repo.accounts["user-2"].balance == 20

    async def test_refund_only_reverses_usage_debits(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)

        with pytest.raises(UsageChargeNotFoundError):
            await meter.refund(FakeSession(), "user-1", "seed:user-1")
        assert repo.accounts["user-1"].balance == 20


class TestRunMetered:
    async def test_success_keeps_charge(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)

        async def extract() -> str:
            return "বাংলা লেখা"

        text, charge = await meter.run_metered(
            FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1", extract
        )

        assert text == "বাংলা লেখা"
        assert charge.balance_after == 15
        assert repo.accounts["user-1"].balance == 15

    async def test_provider_failure_is_refunded(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)

        async def extract() -> str:
            raise FeatureProviderError("ocr_extract", "model timeout")

        with pytest.raises(FeatureProviderError):
            await meter.run_metered(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1", extract)

        assert repo.accounts["user-1"].balance == 20
        kinds = [e.kind for e in repo.entries_for("user-1")]
        assert kinds == ["adjustment", "debit_usage", "refund"]

    async def test_insufficient_balance_never_calls_provider(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 3)
        calls: list[str] = []

        async def extract() -> str:
            calls.append("called")
            return "text"

        with pytest.raises(InsufficientBalanceError):
            await meter.run_metered(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1", extract)
        assert calls == []

    async def test_unexpected_errors_are_not_refunded(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)

        async def extract() -> str:
            raise RuntimeError("outcome unknown")

        with pytest.raises(RuntimeError):
            await meter.run_metered(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1", extract)
        assert repo.accounts["user-1"].balance == 15

    async def test_refunded_request_cannot_run_again(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)

        async def failing() -> str:
            raise FeatureProviderError("ocr_extract", "bad image")

        async def working() -> str:
            return "text"

        with pytest.raises(FeatureProviderError):
            await meter.run_metered(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1", failing)

        with pytest.raises(IdempotencyConflictError):
            await meter.run_metered(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1", working)
        assert repo.accounts["user-1"].balance == 20

    async def test_failed_refund_still_raises_provider_error(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 20)

        async def extract() -> str:
            # Storage goes away together with the provider
            repo.fail_on("apply_delta", *(ConnectionRefusedError() for _ in range(3)))
            raise FeatureProviderError("ocr_extract", "model timeout")

        with pytest.raises(FeatureProviderError):
            await meter.run_metered(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1", extract)
        assert repo.accounts["user-1"].balance == 15

        # The refund endpoint settles it later
        await meter.refund(FakeSession(), "user-1", "req-1")
        assert repo.accounts["user-1"].balance == 20


class TestUsageSummary:
    async def test_summary_nets_refunds_and_lists_all_features(
        self, repo: FakeLedgerRepository, meter: UsageMeter
    ) -> None:
        repo.seed_account("user-1", 100)
        await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-1")
        await meter.charge(FakeSession(), "user-1", Feature.OCR_EXTRACT, "req-2")
        await meter.refund(FakeSession(), "user-1", "req-2")

        summary = await meter.usage_summary(FakeSession(), "user-1")

        by_feature = {u.feature: u for u in summary}
        assert by_feature["ocr_extract"].invocations == 2
        assert by_feature["ocr_extract"].refunds == 1
        assert by_feature["ocr_extract"].credits_used == 5
        assert by_feature["text_refine"].invocations == 0
        assert by_feature["text_refine"].credits_used == 0
