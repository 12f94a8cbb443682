"""verify_account detects ledger/balance drift."""

import dataclasses
import logging

import pytest

from src.cr_common.errors import AccountNotFoundError
from src.cr_ledger.domain.invariants import verify_account
from tests.unit.fakes import FakeLedgerRepository, FakeSession


async def test_consistent_account() -> None:
    repo = FakeLedgerRepository()
    repo.seed_account("user-1", 100)
    assert await verify_account(repo, FakeSession(), "user-1") == []


async def test_new_account_without_entries() -> None:
    repo = FakeLedgerRepository()
    repo.seed_account("user-1", 0)
    assert await verify_account(repo, FakeSession(), "user-1") == []


async def test_drift_is_reported_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    repo = FakeLedgerRepository()
    repo.seed_account("user-1", 100)
    repo.accounts["user-1"] = dataclasses.replace(repo.accounts["user-1"], balance=130)

    with caplog.at_level(logging.ERROR):
        violations = await verify_account(repo, FakeSession(), "user-1")

    assert len(violations) == 2
    assert "sum of entry amounts(100)" in violations[0]
    assert "latest balance_after(100)" in violations[1]
    assert "ledger invariant violated" in caplog.text


async def test_version_drift() -> None:
    repo = FakeLedgerRepository()
    repo.seed_account("user-1", 100)
    repo.accounts["user-1"].version = 5

    violations = await verify_account(repo, FakeSession(), "user-1")

    assert violations == ["version(5) != latest account_version(1)"]


async def test_unknown_account() -> None:
    with pytest.raises(AccountNotFoundError):
        await verify_account(FakeLedgerRepository(), FakeSession(), "ghost")
