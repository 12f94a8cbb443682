"""005: create pending_purchases table

Revision ID: 005
Revises: 004
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE pending_purchases (
            purchase_id             VARCHAR(32)     PRIMARY KEY,
            account_id              VARCHAR(64)     NOT NULL REFERENCES accounts (account_id),
            package_id              VARCHAR(32)     NOT NULL,
            credits                 BIGINT          NOT NULL,
            price                   BIGINT          NOT NULL,
            payment_session_token   VARCHAR(128)    NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'PENDING',
            failure_reason          VARCHAR(500),
            expires_at              TIMESTAMPTZ     NOT NULL,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_pending_payment_session_token UNIQUE (payment_session_token),
            CONSTRAINT ck_pending_status CHECK (
                status IN ('PENDING', 'COMPLETED', 'FAILED', 'CANCELLED', 'EXPIRED')
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_pending_account_open
        ON pending_purchases (account_id, expires_at)
        WHERE status = 'PENDING';
    """)
    op.execute("""
        CREATE TRIGGER trg_pending_purchases_updated_at
            BEFORE UPDATE ON pending_purchases
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS pending_purchases CASCADE;")
