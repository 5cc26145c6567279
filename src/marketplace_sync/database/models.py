"""SQLAlchemy models for the marketplace records the sync reads and writes."""

import uuid
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    ForeignKey,
    Numeric,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    """Marketplace account roles."""
    BUYER = "buyer"
    VENDOR = "vendor"
    ADMIN = "admin"


class OrderStatus(str, enum.Enum):
    """Order lifecycle statuses."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class User(Base):
    """Marketplace account. Owned by the auth module; the sync only reads it."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.BUYER.value)
    paystack_subaccount: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    momo_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_paystack_subaccount", "paystack_subaccount"),
    )


class Product(Base):
    """Catalog entry. Only used to synthesize orders for unlinked transactions."""
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Order(Base):
    """Buyer order for a single product."""
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    buyer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=OrderStatus.PENDING.value)
    shipping_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_orders_buyer_id", "buyer_id"),
        Index("ix_orders_vendor_id", "vendor_id"),
    )


class Payment(Base):
    """Local copy of a gateway transaction, linked to an order."""
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # Idempotency key for transaction sync
    paystack_reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GHS")
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    gateway_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mobile_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    network_provider: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_payments_status", "status"),
        Index("ix_payments_vendor_id", "vendor_id"),
        Index("ix_payments_order_id", "order_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment to dictionary representation."""
        return {
            "id": self.id,
            "reference": self.reference,
            "paystack_reference": self.paystack_reference,
            "order_id": self.order_id,
            "vendor_id": self.vendor_id,
            "buyer_id": self.buyer_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "payment_method": self.payment_method,
            "status": self.status,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "gateway_response": self.gateway_response,
            "mobile_number": self.mobile_number,
            "network_provider": self.network_provider,
        }


class Payout(Base):
    """Local copy of a gateway transfer to a vendor."""
    __tablename__ = "payouts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    vendor_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    momo_number: Mapped[str] = mapped_column(String(30), nullable=False, default="")
    # Idempotency key for transfer sync
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_payouts_vendor_id", "vendor_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert payout to dictionary representation."""
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "amount": str(self.amount),
            "status": self.status,
            "momo_number": self.momo_number,
            "transaction_id": self.transaction_id,
        }
