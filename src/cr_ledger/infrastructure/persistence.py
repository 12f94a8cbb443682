"""LedgerRepository: concrete implementation of LedgerRepositoryProtocol.

Balance mutation is a single conditional PostgreSQL UPDATE ... RETURNING.
The UPDATE takes the account row lock, which serializes concurrent applies on
one account until the caller's transaction ends. A result of 0 rows means the
account is missing, inactive, or the balance would go negative.

Entry append uses ON CONFLICT (idempotency_key) DO NOTHING: a concurrent
duplicate waits for the first transaction and then inserts nothing.

Transaction ownership: the CALLER (LedgerEngine) commits or rolls back.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.enums import EntryKind
from src.cr_common.errors import InternalError
from src.cr_ledger.domain.models import Account, FeatureUsage, LedgerEntry

# ---------------------------------------------------------------------------
# SQL: accounts
# ---------------------------------------------------------------------------

_ACCOUNT_COLUMNS = "account_id, balance, version, is_active, created_at, updated_at"

_GET_ACCOUNT_SQL = text(f"""
    SELECT {_ACCOUNT_COLUMNS}
    FROM accounts
    WHERE account_id = :account_id
""")

_CREATE_ACCOUNT_SQL = text("""
    INSERT INTO accounts (account_id, balance, version, is_active)
    VALUES (:account_id, 0, 0, TRUE)
    ON CONFLICT (account_id) DO NOTHING
""")

_SET_ACTIVE_SQL = text(f"""
    UPDATE accounts
    SET is_active = :active,
        updated_at = NOW()
    WHERE account_id = :account_id
    RETURNING {_ACCOUNT_COLUMNS}
""")

_APPLY_DELTA_SQL = text(f"""
    UPDATE accounts
    SET balance = balance + :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE account_id = :account_id
      AND is_active
      AND balance + :amount >= 0
    RETURNING {_ACCOUNT_COLUMNS}
""")

# ---------------------------------------------------------------------------
# SQL: ledger_entries
# ---------------------------------------------------------------------------

_ENTRY_COLUMNS = (
    "entry_id, account_id, kind, amount, balance_after, account_version, "
    "idempotency_key, external_ref, description, created_at"
)

_INSERT_ENTRY_SQL = text(f"""
    INSERT INTO ledger_entries
        (entry_id, account_id, kind, amount, balance_after, account_version,
         idempotency_key, external_ref, description, created_at)
    VALUES
        (:entry_id, :account_id, :kind, :amount, :balance_after, :account_version,
         :idempotency_key, :external_ref, :description, :created_at)
    ON CONFLICT (idempotency_key) DO NOTHING
    RETURNING {_ENTRY_COLUMNS}
""")

_FIND_BY_KEY_SQL = text(f"""
    SELECT {_ENTRY_COLUMNS}
    FROM ledger_entries
    WHERE idempotency_key = :idempotency_key
""")

_LIST_ENTRIES_SQL = text(f"""
    SELECT {_ENTRY_COLUMNS}
    FROM ledger_entries
    WHERE account_id = :account_id
      AND (CAST(:cursor_version AS BIGINT) IS NULL OR account_version < :cursor_version)
      AND (CAST(:kind AS VARCHAR) IS NULL OR kind = :kind)
    ORDER BY account_version DESC
    LIMIT :limit
""")

_LATEST_ENTRY_SQL = text(f"""
    SELECT {_ENTRY_COLUMNS}
    FROM ledger_entries
    WHERE account_id = :account_id
    ORDER BY account_version DESC
    LIMIT 1
""")

_SUM_AMOUNTS_SQL = text("""
    SELECT COALESCE(SUM(amount), 0)
    FROM ledger_entries
    WHERE account_id = :account_id
""")

# A refund is keyed "refund:" + the key of the debit it reverses
_FEATURE_USAGE_SQL = text("""
    SELECT d.external_ref                         AS feature,
           COUNT(*)                               AS invocations,
           COUNT(r.entry_id)                      AS refunds,
           COALESCE(SUM(-d.amount), 0)
             - COALESCE(SUM(r.amount), 0)         AS credits_used
    FROM ledger_entries d
    LEFT JOIN ledger_entries r
           ON r.account_id = d.account_id
          AND r.kind = :refund_kind
          AND r.idempotency_key = 'refund:' || d.idempotency_key
    WHERE d.account_id = :account_id
      AND d.kind = :debit_kind
    GROUP BY d.external_ref
    ORDER BY d.external_ref
""")


def _row_to_account(row: object) -> Account:
    return Account(
        account_id=row.account_id,  # type: ignore[attr-defined]
        balance=row.balance,  # type: ignore[attr-defined]
        version=row.version,  # type: ignore[attr-defined]
        is_active=row.is_active,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_entry(row: object) -> LedgerEntry:
    return LedgerEntry(
        entry_id=row.entry_id,  # type: ignore[attr-defined]
        account_id=row.account_id,  # type: ignore[attr-defined]
        kind=row.kind,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        balance_after=row.balance_after,  # type: ignore[attr-defined]
        account_version=row.account_version,  # type: ignore[attr-defined]
        idempotency_key=row.idempotency_key,  # type: ignore[attr-defined]
        external_ref=row.external_ref,  # type: ignore[attr-defined]
        description=row.description,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class LedgerRepository:
    """Concrete repository: all mutations atomic at the SQL level."""

    async def get_account(self, db: AsyncSession, account_id: str) -> Account | None:
        result = await db.execute(_GET_ACCOUNT_SQL, {"account_id": account_id})
        row = result.fetchone()
        return _row_to_account(row) if row else None

    async def create_account(self, db: AsyncSession, account_id: str) -> Account:
        await db.execute(_CREATE_ACCOUNT_SQL, {"account_id": account_id})
        account = await self.get_account(db, account_id)
        if account is None:
            raise InternalError(f"Account insert for {account_id} returned no row")
        return account

    async def set_account_active(
        self, db: AsyncSession, account_id: str, active: bool
    ) -> Account | None:
        result = await db.execute(
            _SET_ACTIVE_SQL, {"account_id": account_id, "active": active}
        )
        row = result.fetchone()
        return _row_to_account(row) if row else None

    async def apply_delta(
        self, db: AsyncSession, account_id: str, amount: int
    ) -> Account | None:
        result = await db.execute(
            _APPLY_DELTA_SQL, {"account_id": account_id, "amount": amount}
        )
        row = result.fetchone()
        return _row_to_account(row) if row else None

    async def append_entry(self, db: AsyncSession, entry: LedgerEntry) -> LedgerEntry | None:
        result = await db.execute(
            _INSERT_ENTRY_SQL,
            {
                "entry_id": entry.entry_id,
                "account_id": entry.account_id,
                "kind": entry.kind,
                "amount": entry.amount,
                "balance_after": entry.balance_after,
                "account_version": entry.account_version,
                "idempotency_key": entry.idempotency_key,
                "external_ref": entry.external_ref,
                "description": entry.description,
                "created_at": entry.created_at,
            },
        )
        row = result.fetchone()
        return _row_to_entry(row) if row else None

    async def find_entry_by_key(
        self, db: AsyncSession, idempotency_key: str
    ) -> LedgerEntry | None:
        result = await db.execute(_FIND_BY_KEY_SQL, {"idempotency_key": idempotency_key})
        row = result.fetchone()
        return _row_to_entry(row) if row else None

    async def list_entries(
        self,
        db: AsyncSession,
        account_id: str,
        cursor_version: int | None,
        limit: int,
        kind: str | None,
    ) -> list[LedgerEntry]:
        result = await db.execute(
            _LIST_ENTRIES_SQL,
            {
                "account_id": account_id,
                "cursor_version": cursor_version,
                "kind": kind,
                "limit": limit,
            },
        )
        return [_row_to_entry(row) for row in result.fetchall()]

    async def latest_entry(self, db: AsyncSession, account_id: str) -> LedgerEntry | None:
        result = await db.execute(_LATEST_ENTRY_SQL, {"account_id": account_id})
        row = result.fetchone()
        return _row_to_entry(row) if row else None

    async def sum_amounts(self, db: AsyncSession, account_id: str) -> int:
        result = await db.execute(_SUM_AMOUNTS_SQL, {"account_id": account_id})
        return int(result.scalar_one())

    async def feature_usage(self, db: AsyncSession, account_id: str) -> list[FeatureUsage]:
        result = await db.execute(
            _FEATURE_USAGE_SQL,
            {
                "account_id": account_id,
                "debit_kind": EntryKind.DEBIT_USAGE.value,
                "refund_kind": EntryKind.REFUND.value,
            },
        )
        return [
            FeatureUsage(
                feature=row.feature,
                invocations=int(row.invocations),
                refunds=int(row.refunds),
                credits_used=int(row.credits_used),
            )
            for row in result.fetchall()
        ]
