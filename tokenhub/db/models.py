"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


CREDITS = Numeric(14, 4)


class Token(Base):
    """
    ORM model for tokens table (regular ledger).

    A regular token is restricted to one product.
    """

    __tablename__ = "tokens"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    token: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("products.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    credits: Mapped[Decimal] = mapped_column(CREDITS, nullable=False, default=Decimal("0"))

    activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activation_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    auto_activation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Owed before activation; cleared when auto-activation is paid
    total_usd_due: Mapped[Decimal] = mapped_column(CREDITS, nullable=False, default=Decimal("0"))

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_tokens_credits_non_negative"),
        CheckConstraint("total_usd_due >= 0", name="ck_tokens_total_usd_due_non_negative"),
        UniqueConstraint("token", name="uq_tokens_token"),
        Index("idx_tokens_product_id", "product_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Token(token={self.token}, product_id={self.product_id}, credits={self.credits})>"


class MasterToken(Base):
    """
    ORM model for tokens_master table (master ledger).

    Master tokens are usable against any product and priced by product value.
    """

    __tablename__ = "tokens_master"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    token: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credits: Mapped[Decimal] = mapped_column(CREDITS, nullable=False, default=Decimal("0"))
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_tokens_master_credits_non_negative"),
        UniqueConstraint("token", name="uq_tokens_master_token"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<MasterToken(token={self.token}, credits={self.credits})>"


class Product(Base):
    """
    ORM model for products table.

    API products carry the upstream call template used at settlement time.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_type: Mapped[str] = mapped_column(String(20), nullable=False, default="digital")

    # Price in credits per unit
    value: Mapped[Decimal] = mapped_column(CREDITS, nullable=False, default=Decimal("1"))
    quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Upstream call template (api products)
    upstream_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    http_method: Mapped[str] = mapped_column(String(10), nullable=False, default="GET")
    header_http: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    payload_template: Mapped[Any | None] = mapped_column(JSONB, nullable=True)
    path_body: Mapped[str | None] = mapped_column(String(255), nullable=True)
    condition_reply_output: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Display
    short_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("product_type IN ('digital', 'api')", name="ck_products_type"),
        CheckConstraint("value > 0", name="ck_products_value_positive"),
        UniqueConstraint("name", name="uq_products_name"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Product(id={self.id}, name={self.name}, type={self.product_type})>"


class DigitalProduct(Base):
    """
    ORM model for digital_products table.

    One pre-provisioned content unit, deliverable exactly once.
    """

    __tablename__ = "digital_products"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index(
            "idx_digital_products_available",
            "product_id",
            "created_at",
            "id",
            postgresql_where=(is_used.is_(False)),
        ),
    )


class Transaction(Base):
    """
    ORM model for transactions table.

    Append-only log of settlement attempts. Only output_result and note
    are rewritten afterwards, by the refund sweep.
    """

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    token: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    output_result: Mapped[list[Any]] = mapped_column(JSONB, nullable=False, default=list)
    response_data: Mapped[Any | None] = mapped_column(JSONB, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    use_master_token: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    credits_charged: Mapped[Decimal] = mapped_column(
        CREDITS, nullable=False, default=Decimal("0")
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("qty > 0", name="ck_transactions_qty_positive"),
        CheckConstraint("status IN ('success', 'failed')", name="ck_transactions_status"),
        CheckConstraint("credits_charged >= 0", name="ck_transactions_charged_non_negative"),
        Index("idx_transactions_token_timestamp", "token", "timestamp"),
        Index("idx_transactions_status_timestamp", "status", "timestamp"),
        Index("idx_transactions_product_id", "product_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Transaction(id={self.id}, token={self.token}, product={self.product_name}, "
            f"qty={self.qty}, status={self.status})>"
        )


class RefundTransaction(Base):
    """
    ORM model for refund_transactions table.

    At most one refund record per transaction.
    """

    __tablename__ = "refund_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    transaction_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    refund_status: Mapped[str] = mapped_column(String(50), nullable=False)
    response_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_refund_transactions_transaction_id"),
    )


class RefundSweepConfig(Base):
    """
    ORM model for refund_sweep_configs table.

    Failure signatures that make a successful transaction eligible for
    automatic reversal.
    """

    __tablename__ = "refund_sweep_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payloads: Mapped[str] = mapped_column(Text, nullable=False)
    window_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    # NULL targets every product
    product_ids: Mapped[list[str] | None] = mapped_column(ARRAY(String(64)), nullable=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("window_hours > 0", name="ck_refund_sweep_window_positive"),
    )

    @property
    def signatures(self) -> list[str]:
        """Trimmed, lowercased failure signatures."""
        return [p.strip().lower() for p in self.payloads.split(",") if p.strip()]


class ProductQuantitySource(Base):
    """
    ORM model for products_quantity table.

    Upstream call used to refresh the cached quantity and price of a product.
    """

    __tablename__ = "products_quantity"

    id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    upstream_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    http_method: Mapped[str] = mapped_column(String(10), nullable=False, default="GET")
    header_http: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    payload_template: Mapped[Any | None] = mapped_column(JSONB, nullable=True)
    path_body: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Price path, read by the price sync
    path_body_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    regex_output: Mapped[str | None] = mapped_column(String(255), nullable=True)


class RestockConfig(Base):
    """
    ORM model for restock_configs table.

    Feeds outputs of successful source transactions back as inventory
    of a destination digital product.
    """

    __tablename__ = "restock_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_product_ids: Mapped[list[str]] = mapped_column(ARRAY(String(64)), nullable=False)
    destination_product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    start_check_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    last_check_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class EmailExtractionPattern(Base):
    """ORM model for email_extraction_patterns table."""

    __tablename__ = "email_extraction_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_email: Mapped[str] = mapped_column(String(255), nullable=False)
    regex_pattern: Mapped[str] = mapped_column(String(500), nullable=False)

    __table_args__ = (UniqueConstraint("from_email", name="uq_email_extraction_from_email"),)
