"""Domain models for cr_ledger: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime

from src.cr_common.enums import EntryKind


@dataclass
class Account:
    account_id: str
    balance: int        # credits, never negative
    version: int        # +1 per applied ledger entry
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class LedgerEntry:
    entry_id: str
    account_id: str
    kind: str                        # EntryKind value
    amount: int                      # signed delta, never 0
    balance_after: int               # account balance snapshot after this entry
    account_version: int             # account version produced by this entry
    idempotency_key: str
    external_ref: str | None = None
    description: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class LedgerOperation:
    """A request to mutate one account balance, as passed to LedgerEngine.apply."""

    account_id: str
    amount: int
    kind: EntryKind
    idempotency_key: str
    external_ref: str | None = None
    description: str | None = None

    def matches(self, entry: LedgerEntry) -> bool:
        """True if `entry` records this same logical event."""
        return (
            entry.account_id == self.account_id
            and entry.kind == self.kind.value
            and entry.amount == self.amount
        )


@dataclass(frozen=True)
class ApplyResult:
    entry: LedgerEntry
    replayed: bool      # True when the idempotency key was already recorded

    @property
    def balance_after(self) -> int:
        return self.entry.balance_after


@dataclass(frozen=True)
class FeatureUsage:
    feature: str
    invocations: int     # usage debits recorded
    refunds: int         # refunds linked to those debits
    credits_used: int    # net credits, debits minus refunds
