"""Initial settlement schema: ledgers, catalog, inventory, transactions,
refunds and sweep configuration.

Revision ID: 2026_10_17_0000
Revises:
Create Date: 2026-10-17

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_17_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
    )


def upgrade() -> None:
    """Create all settlement tables."""
    op.create_table(
        "products",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("product_type", sa.String(20), nullable=False, server_default="digital"),
        sa.Column("value", sa.Numeric(12, 2), nullable=False, server_default="1"),
        sa.Column("quantity", sa.Integer, nullable=True),
        sa.Column("upstream_url", sa.Text, nullable=True),
        sa.Column("http_method", sa.String(10), nullable=False, server_default="GET"),
        sa.Column("header_http", JSONB, nullable=True),
        sa.Column("payload_template", JSONB, nullable=True),
        sa.Column("path_body", sa.String(255), nullable=True),
        sa.Column("condition_reply_output", sa.String(255), nullable=True),
        sa.Column("short_description", sa.Text, nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("subcategory", sa.String(100), nullable=True),
        sa.Column("visible", sa.Boolean, nullable=False, server_default="true"),
        _created_at(),
        sa.CheckConstraint("product_type IN ('digital', 'api')", name="ck_products_type"),
        sa.CheckConstraint("value > 0", name="ck_products_value_positive"),
        sa.UniqueConstraint("name", name="uq_products_name"),
    )

    op.create_table(
        "tokens",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column(
            "product_id",
            sa.String(64),
            sa.ForeignKey("products.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("credits", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("activated", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("locked", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("activation_status", sa.String(20), nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        _created_at(),
        sa.CheckConstraint("credits >= 0", name="ck_tokens_credits_non_negative"),
        sa.UniqueConstraint("token", name="uq_tokens_token"),
    )
    op.create_index("idx_tokens_product_id", "tokens", ["product_id"])

    op.create_table(
        "tokens_master",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("credits", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("locked", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("note", sa.Text, nullable=True),
        _created_at(),
        sa.CheckConstraint("credits >= 0", name="ck_tokens_master_credits_non_negative"),
        sa.UniqueConstraint("token", name="uq_tokens_master_token"),
    )

    op.create_table(
        "digital_products",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "product_id",
            sa.String(64),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("is_used", sa.Boolean, nullable=False, server_default="false"),
        _created_at(),
    )
    op.create_index(
        "idx_digital_products_available",
        "digital_products",
        ["product_id", "created_at", "id"],
        postgresql_where=sa.text("is_used = false"),
    )

    op.create_table(
        "transactions",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("qty", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("output_result", JSONB, nullable=False, server_default="[]"),
        sa.Column("response_data", JSONB, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("use_master_token", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("credits_charged", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column(
            "timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
        ),
        sa.CheckConstraint("qty > 0", name="ck_transactions_qty_positive"),
        sa.CheckConstraint("status IN ('success', 'failed')", name="ck_transactions_status"),
        sa.CheckConstraint("credits_charged >= 0", name="ck_transactions_charged_non_negative"),
    )
    op.create_index("idx_transactions_token_timestamp", "transactions", ["token", "timestamp"])
    op.create_index("idx_transactions_status_timestamp", "transactions", ["status", "timestamp"])
    op.create_index("idx_transactions_product_id", "transactions", ["product_id"])

    op.create_table(
        "refund_transactions",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column(
            "transaction_id",
            UUID(as_uuid=True),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("refund_status", sa.String(50), nullable=False),
        sa.Column("response_message", sa.Text, nullable=True),
        _created_at(),
        sa.UniqueConstraint("transaction_id", name="uq_refund_transactions_transaction_id"),
    )

    op.create_table(
        "refund_sweep_configs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("payloads", sa.Text, nullable=False),
        sa.Column("window_hours", sa.Integer, nullable=False, server_default="24"),
        sa.Column("product_ids", ARRAY(sa.String(64)), nullable=True),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("window_hours > 0", name="ck_refund_sweep_window_positive"),
    )

    op.create_table(
        "products_quantity",
        sa.Column(
            "id",
            sa.String(64),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("upstream_url", sa.Text, nullable=True),
        sa.Column("http_method", sa.String(10), nullable=False, server_default="GET"),
        sa.Column("header_http", JSONB, nullable=True),
        sa.Column("payload_template", JSONB, nullable=True),
        sa.Column("path_body", sa.String(255), nullable=True),
        sa.Column("regex_output", sa.String(255), nullable=True),
    )

    op.create_table(
        "restock_configs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source_product_ids", ARRAY(sa.String(64)), nullable=False),
        sa.Column(
            "destination_product_id",
            sa.String(64),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("start_check_minutes", sa.Integer, nullable=False, server_default="60"),
        sa.Column(
            "last_check_time",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        _created_at(),
    )

    op.create_table(
        "email_extraction_patterns",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("from_email", sa.String(255), nullable=False),
        sa.Column("regex_pattern", sa.String(500), nullable=False),
        sa.UniqueConstraint("from_email", name="uq_email_extraction_from_email"),
    )


def downgrade() -> None:
    """Drop all settlement tables."""
    op.drop_table("email_extraction_patterns")
    op.drop_table("restock_configs")
    op.drop_table("products_quantity")
    op.drop_table("refund_sweep_configs")
    op.drop_table("refund_transactions")
    op.drop_index("idx_transactions_product_id", table_name="transactions")
    op.drop_index("idx_transactions_status_timestamp", table_name="transactions")
    op.drop_index("idx_transactions_token_timestamp", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("idx_digital_products_available", table_name="digital_products")
    op.drop_table("digital_products")
    op.drop_table("tokens_master")
    op.drop_index("idx_tokens_product_id", table_name="tokens")
    op.drop_table("tokens")
    op.drop_table("products")
