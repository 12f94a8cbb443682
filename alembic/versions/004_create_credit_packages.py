"""004: create credit_packages table and seed the pricing page packages

Revision ID: 004
Revises: 003
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE credit_packages (
            package_id      VARCHAR(32)     PRIMARY KEY,
            name            VARCHAR(64)     NOT NULL,
            credits         BIGINT          NOT NULL,
            bonus_credits   BIGINT          NOT NULL DEFAULT 0,
            price           BIGINT          NOT NULL,
            description     TEXT,
            is_popular      BOOLEAN         NOT NULL DEFAULT FALSE,
            is_active       BOOLEAN         NOT NULL DEFAULT TRUE,
            sort_order      INTEGER         NOT NULL DEFAULT 0,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_packages_credits_gt_0 CHECK (credits > 0),
            CONSTRAINT ck_packages_bonus_gte_0  CHECK (bonus_credits >= 0),
            CONSTRAINT ck_packages_price_gt_0   CHECK (price > 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_credit_packages_updated_at
            BEFORE UPDATE ON credit_packages
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("""
        INSERT INTO credit_packages
            (package_id, name, credits, bonus_credits, price, description, is_popular, sort_order)
        VALUES
            ('starter',    'Starter',    100,  0,   500,  'For trying out Bangla OCR', FALSE, 1),
            ('popular',    'Popular',    500,  50,  2000, 'Most chosen package',       TRUE,  2),
            ('best_value', 'Best Value', 1000, 150, 3500, 'Lowest price per credit',   FALSE, 3);
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS credit_packages CASCADE;")
