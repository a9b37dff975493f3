"""
Database tables for affiliates, referral attribution and per-product markups.
"""
from __future__ import annotations

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, JSON, String,
    UniqueConstraint,
)

from settlement.db.tables import Base, MONEY, _utcnow, _uuid


class AffiliateRow(Base):
    """A registered marketing partner and its derived earnings totals."""
    __tablename__ = "affiliates"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, unique=True, index=True)  # one affiliate per user
    company_id = Column(String(36), nullable=True, index=True)
    affiliate_code = Column(String(16), nullable=False, unique=True, index=True)

    # PERCENTAGE | MARKUP
    commission_type = Column(String(20), nullable=False, default="PERCENTAGE")
    commission_rate = Column(Float, nullable=False, default=5.0)  # percent

    # PENDING | ACTIVE | SUSPENDED, mutated only by admin action
    status = Column(String(20), nullable=False, default="PENDING", index=True)

    # Counters
    total_clicks = Column(Integer, nullable=False, default=0)
    total_sales = Column(Integer, nullable=False, default=0)

    # Derived totals, always recomputed by StatsAggregator
    total_earnings = Column(MONEY, nullable=False, default=0)
    paid_earnings = Column(MONEY, nullable=False, default=0)
    pending_earnings = Column(MONEY, nullable=False, default=0)
    conversion_rate = Column(Float, nullable=False, default=0.0)

    min_payout = Column(MONEY, nullable=False, default=100)
    payment_method = Column(String(50), nullable=True)
    payment_details = Column(JSON, nullable=True)  # PaymentDetails dict

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class AffiliateReferralRow(Base):
    """One recorded click/visit attributed to an affiliate code."""
    __tablename__ = "affiliate_referrals"

    id = Column(String(36), primary_key=True, default=_uuid)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    customer_id = Column(String(36), nullable=True)
    referral_code = Column(String(16), nullable=False)
    referral_url = Column(String(2000), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 support
    user_agent = Column(String(500), nullable=True)
    source = Column(String(100), nullable=True)

    converted = Column(Boolean, nullable=False, default=False)
    converted_at = Column(DateTime(timezone=True), nullable=True)
    order_id = Column(String(36), nullable=True)

    # affiliate + visitor + cooldown bucket; NULL when the visitor is anonymous
    dedup_key = Column(String(64), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_referrals_affiliate_customer", "affiliate_id", "customer_id", "created_at"),
        Index("ix_referrals_affiliate_ip", "affiliate_id", "ip_address", "created_at"),
        Index("ix_referrals_affiliate_converted", "affiliate_id", "converted"),
    )


class AffiliateProductRow(Base):
    """An affiliate's markup on one product (MARKUP commission mode)."""
    __tablename__ = "affiliate_products"

    id = Column(String(36), primary_key=True, default=_uuid)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    base_price = Column(MONEY, nullable=False)  # pinned at creation, never re-pinned
    markup = Column(MONEY, nullable=False, default=0)
    final_price = Column(MONEY, nullable=False)  # base_price + markup
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("affiliate_id", "product_id", name="uq_affiliate_product"),
    )
