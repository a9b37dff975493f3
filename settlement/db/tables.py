"""SQLAlchemy ORM models: declarative base plus the catalog/order snapshots we consume.

Products and orders are owned by the catalog and order-management services.
Only the fields this subsystem reads are mapped here.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String,
)
from sqlalchemy.orm import DeclarativeBase, relationship

MONEY = Numeric(12, 2)


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ProductRow(Base):
    """Catalog product: canonical price and whether affiliates may mark it up."""
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    price = Column(MONEY, nullable=False)
    base_price = Column(MONEY, nullable=True)  # platform cost; falls back to price
    allow_affiliate_markup = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class OrderRow(Base):
    """Finalized order header as handed over by order management."""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), nullable=False, index=True)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id", ondelete="SET NULL"), nullable=True, index=True)
    customer_id = Column(String(36), nullable=True)
    order_number = Column(String(50), nullable=True)
    source = Column(String(50), nullable=True)  # storefront channel, e.g. AFFILIATE_STORE

    subtotal = Column(MONEY, nullable=False, default=0)
    shipping = Column(MONEY, nullable=False, default=0)
    total = Column(MONEY, nullable=False, default=0)

    # Status: PENDING | CONFIRMED | DELIVERED | CANCELLED (owned by order management)
    status = Column(String(20), nullable=False, default="PENDING")

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    items = relationship("OrderItemRow", back_populates="order", lazy="selectin", order_by="OrderItemRow.position")


class OrderItemRow(Base):
    """Order line with immutable price snapshots taken at sale time.

    Later catalog price changes never touch these, so historical commissions
    stay reproducible.
    """
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=1)

    sell_price = Column(MONEY, nullable=False)     # what the customer paid per unit
    base_price = Column(MONEY, nullable=True)      # platform cost per unit
    merchant_price = Column(MONEY, nullable=True)  # merchant cost per unit
    merchant_id = Column(String(36), nullable=True, index=True)

    order = relationship("OrderRow", back_populates="items")

    __table_args__ = (
        Index("ix_order_items_order_product", "order_id", "product_id"),
    )
