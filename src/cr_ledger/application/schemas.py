"""Pydantic schemas and cursor utilities for the credits API."""

import base64
import json

from pydantic import BaseModel

from src.cr_common.display import credits_to_display
from src.cr_ledger.domain.models import Account, ApplyResult, LedgerEntry

# ---------------------------------------------------------------------------
# Cursor-based pagination utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_version: int) -> str:
    """Encode the last seen account_version into an opaque Base64 cursor string."""
    payload = json.dumps({"v": last_version})
    return base64.urlsafe_b64encode(payload.encode()).decode()


def cursor_decode(cursor: str | None) -> int | None:
    """Decode a cursor string back to the last seen version. Returns None on error."""
    if cursor is None:
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
        return int(payload["v"])
    except (ValueError, KeyError, TypeError):
        return None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    account_id: str
    balance: int
    balance_display: str
    is_active: bool

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        return cls(
            account_id=account.account_id,
            balance=account.balance,
            balance_display=credits_to_display(account.balance),
            is_active=account.is_active,
        )


class BalanceResponse(BaseModel):
    account_id: str
    balance: int
    balance_display: str
    low_balance: bool

    @classmethod
    def from_balance(cls, account_id: str, balance: int, threshold: int) -> "BalanceResponse":
        return cls(
            account_id=account_id,
            balance=balance,
            balance_display=credits_to_display(balance),
            low_balance=balance < threshold,
        )


class LedgerEntryItem(BaseModel):
    entry_id: str
    kind: str
    amount: int
    amount_display: str
    balance_after: int
    external_ref: str | None
    idempotency_key: str
    description: str | None
    created_at: str  # ISO8601 string

    @classmethod
    def from_domain(cls, entry: LedgerEntry) -> "LedgerEntryItem":
        return cls(
            entry_id=entry.entry_id,
            kind=entry.kind,
            amount=entry.amount,
            amount_display=credits_to_display(entry.amount),
            balance_after=entry.balance_after,
            external_ref=entry.external_ref,
            idempotency_key=entry.idempotency_key,
            description=entry.description,
            created_at=entry.created_at.isoformat() if entry.created_at else "",
        )


class ApplyResponse(BaseModel):
    """Outcome of one ledger operation as returned to adapters' callers."""

    entry: LedgerEntryItem
    balance_after: int
    replayed: bool

    @classmethod
    def from_result(cls, result: ApplyResult) -> "ApplyResponse":
        return cls(
            entry=LedgerEntryItem.from_domain(result.entry),
            balance_after=result.balance_after,
            replayed=result.replayed,
        )


class HistoryResponse(BaseModel):
    items: list[LedgerEntryItem]
    next_cursor: str | None
    has_more: bool


class DashboardResponse(BaseModel):
    balance: BalanceResponse
    recent_entries: list[LedgerEntryItem]
