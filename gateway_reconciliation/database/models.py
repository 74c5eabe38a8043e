"""SQLAlchemy database models for the reconciliation engine."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys
IdType = BigInteger().with_variant(Integer, "sqlite")

GATEWAY_ORDER_REF_LENGTH = 64
# At most one current pending attempt per order
CURRENT_PENDING = "status = 'pending' AND NOT superseded"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TransactionRecord(Base):
    """
    Payment attempts table.

    One row per gateway order reference. Status moves from pending to a
    terminal value exactly once, through a conditional update.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    order_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    gateway_order_ref: Mapped[str] = mapped_column(
        String(GATEWAY_ORDER_REF_LENGTH), unique=True, nullable=False
    )
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    superseded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gateway_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )
    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="positive_amount"),
        CheckConstraint("status IN ('pending', 'success', 'failed')", name="valid_status"),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_transactions_order_status", "order_ref", "status"),
        Index(
            "uq_transactions_current_pending",
            "order_ref",
            unique=True,
            postgresql_where=text(CURRENT_PENDING),
            sqlite_where=text(CURRENT_PENDING),
        ),
    )

    def __repr__(self) -> str:
        """String representation of TransactionRecord."""
        return (
            f"<TransactionRecord(transaction_id={self.transaction_id}, "
            f"gateway_order_ref={self.gateway_order_ref}, status={self.status})>"
        )


class OrderRecord(Base):
    """
    Orders table.

    ``synchronized_transaction_id`` is the marker the synchronizer claims
    before applying inventory and cart side effects.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    order_ref: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    customer_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    total_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="unpaid")
    fulfillment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    synchronized_transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("total_minor >= 0", name="non_negative_total"),
        CheckConstraint(
            "payment_status IN ('unpaid', 'paid', 'failed', 'refunded')",
            name="valid_payment_status",
        ),
        CheckConstraint(
            "fulfillment_status IN ('pending', 'processing', 'shipped', 'delivered', "
            "'cancelled', 'refunded')",
            name="valid_fulfillment_status",
        ),
    )

    def __repr__(self) -> str:
        """String representation of OrderRecord."""
        return (
            f"<OrderRecord(order_ref={self.order_ref}, payment_status={self.payment_status}, "
            f"fulfillment_status={self.fulfillment_status})>"
        )


class OrderItemRecord(Base):
    """Order line items with the unit price frozen at order time."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    order_ref: Mapped[str] = mapped_column(
        String(64), ForeignKey("orders.order_ref"), nullable=False, index=True
    )
    product_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="positive_quantity"),
        CheckConstraint("unit_price_minor >= 0", name="non_negative_price"),
    )


class ProductRecord(Base):
    """Stock levels consumed by the inventory store."""

    __tablename__ = "products"

    product_ref: Mapped[str] = mapped_column(String(64), primary_key=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CartItemRecord(Base):
    """Active cart lines per customer."""

    __tablename__ = "cart_items"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    customer_ref: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
