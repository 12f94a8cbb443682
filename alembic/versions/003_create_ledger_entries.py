"""003: create ledger_entries table

Revision ID: 003
Revises: 002
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE ledger_entries (
            entry_id        VARCHAR(32)     PRIMARY KEY,
            account_id      VARCHAR(64)     NOT NULL REFERENCES accounts (account_id),
            kind            VARCHAR(20)     NOT NULL,
            amount          BIGINT          NOT NULL,
            balance_after   BIGINT          NOT NULL,
            account_version BIGINT          NOT NULL,
            idempotency_key VARCHAR(128)    NOT NULL,
            external_ref    VARCHAR(128),
            description     VARCHAR(500),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_ledger_idempotency_key UNIQUE (idempotency_key),
            CONSTRAINT uq_ledger_account_version UNIQUE (account_id, account_version),
            CONSTRAINT ck_ledger_kind CHECK (
                kind IN ('purchase', 'debit_usage', 'refund', 'adjustment')
            ),
            CONSTRAINT ck_ledger_amount_sign CHECK (
                (kind = 'purchase'    AND amount > 0) OR
                (kind = 'debit_usage' AND amount < 0) OR
                (kind = 'refund'      AND amount > 0) OR
                (kind = 'adjustment'  AND amount <> 0)
            ),
            CONSTRAINT ck_ledger_balance_gte_0 CHECK (balance_after >= 0)
        );
    """)
    op.execute("""
        CREATE INDEX idx_ledger_external_ref
        ON ledger_entries (account_id, kind, external_ref)
        WHERE external_ref IS NOT NULL;
    """)
    op.execute("CREATE INDEX idx_ledger_account_time ON ledger_entries (account_id, created_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_ledger_entries_append_only
            BEFORE UPDATE OR DELETE ON ledger_entries
            FOR EACH ROW EXECUTE FUNCTION fn_reject_modification();
    """)
    op.execute("COMMENT ON TABLE ledger_entries IS 'Credit ledger, append-only; amounts are signed credits';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ledger_entries CASCADE;")
