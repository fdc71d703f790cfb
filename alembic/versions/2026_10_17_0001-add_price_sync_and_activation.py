"""Add price sync source path, token activation fields and 4-decimal credits

Revision ID: 2026_10_17_0001
Revises: 2026_10_17_0000
Create Date: 2026-10-17

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_17_0001"
down_revision: str | None = "2026_10_17_0000"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# (table, column) pairs holding credit amounts
CREDIT_COLUMNS = (
    ("products", "value"),
    ("tokens", "credits"),
    ("tokens_master", "credits"),
    ("transactions", "credits_charged"),
)


def upgrade() -> None:
    # Synced prices carry four decimals
    for table, column in CREDIT_COLUMNS:
        op.alter_column(
            table,
            column,
            type_=sa.Numeric(14, 4),
            existing_type=sa.Numeric(12, 2),
            existing_nullable=False,
        )

    op.add_column("products_quantity", sa.Column("path_body_value", sa.String(255), nullable=True))

    op.add_column(
        "tokens",
        sa.Column("auto_activation", sa.Boolean, nullable=False, server_default="false"),
    )
    op.add_column(
        "tokens",
        sa.Column("total_usd_due", sa.Numeric(14, 4), nullable=False, server_default="0"),
    )
    op.create_check_constraint(
        "ck_tokens_total_usd_due_non_negative", "tokens", "total_usd_due >= 0"
    )


def downgrade() -> None:
    op.drop_constraint("ck_tokens_total_usd_due_non_negative", "tokens", type_="check")
    op.drop_column("tokens", "total_usd_due")
    op.drop_column("tokens", "auto_activation")
    op.drop_column("products_quantity", "path_body_value")

    for table, column in CREDIT_COLUMNS:
        op.alter_column(
            table,
            column,
            type_=sa.Numeric(12, 2),
            existing_type=sa.Numeric(14, 4),
            existing_nullable=False,
        )
