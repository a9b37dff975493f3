"""Commission ledger, payouts, and the commission-calculation outbox."""
from __future__ import annotations

from sqlalchemy import (
    Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint,
)

from settlement.db.tables import Base, MONEY, _utcnow, _uuid


def share_key(kind: str, merchant_id: str | None = None) -> str:
    """One ledger share per order: AFFILIATE, PLATFORM, or MERCHANT:<merchant_id>."""
    return f"{kind}:{merchant_id}" if merchant_id else kind


def _default_share_key(context) -> str:
    params = context.get_current_parameters()
    return share_key(params["type"], params.get("merchant_id"))


class CommissionRow(Base):
    """One ledger entry owed to the affiliate, a merchant, or the platform for one order.

    ``amount`` is immutable once written. ``status``, ``payout_id`` and
    ``paid_at`` are the only columns mutated after creation.
    """
    __tablename__ = "commissions"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(String(36), nullable=False, index=True)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id", ondelete="SET NULL"), nullable=True)
    merchant_id = Column(String(36), nullable=True)

    # AFFILIATE | MERCHANT | PLATFORM
    type = Column(String(20), nullable=False)
    share_key = Column(String(60), nullable=False, default=_default_share_key)
    amount = Column(MONEY, nullable=False)
    order_total = Column(MONEY, nullable=False)

    # PENDING | CONFIRMED | PAID | CANCELLED
    status = Column(String(20), nullable=False, default="PENDING")
    payout_id = Column(String(36), ForeignKey("affiliate_payouts.id", ondelete="RESTRICT"), nullable=True, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        # FIFO allocation scan: affiliate's confirmed, unlinked rows oldest first
        Index("ix_commissions_allocation", "affiliate_id", "status", "payout_id", "created_at"),
        Index("ix_commissions_company_created", "company_id", "created_at"),
        # at most one row per share per order, even when two calculations race
        UniqueConstraint("order_id", "share_key", name="uq_commissions_order_share"),
    )


class AffiliatePayoutRow(Base):
    """A withdrawal request batching one or more confirmed commissions."""
    __tablename__ = "affiliate_payouts"

    id = Column(String(36), primary_key=True, default=_uuid)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)  # requested
    allocated_amount = Column(MONEY, nullable=False, default=0)  # sum of linked commissions
    payment_method = Column(String(50), nullable=True)
    payment_details = Column(JSON, nullable=True)  # PaymentDetails dict

    # PENDING | PAID_EXTERNAL
    status = Column(String(20), nullable=False, default="PENDING")
    transaction_id = Column(String(255), nullable=True)
    external_reference = Column(String(255), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class CommissionTaskRow(Base):
    """Outbox entry: "calculate commissions for this order", written with the order."""
    __tablename__ = "commission_tasks"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)

    # PENDING | DONE | DEAD
    status = Column(String(20), nullable=False, default="PENDING")
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_commission_tasks_due", "status", "next_attempt_at"),
    )
