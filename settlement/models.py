"""Domain enums and structured sub-records shared by tables, services and API."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CommissionType(str, Enum):
    """How an affiliate earns: percentage of subtotal, or own markup over base price."""
    PERCENTAGE = "PERCENTAGE"
    MARKUP = "MARKUP"


class AffiliateStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class CommissionKind(str, Enum):
    """Ledger row owner in the triple split."""
    AFFILIATE = "AFFILIATE"
    MERCHANT = "MERCHANT"
    PLATFORM = "PLATFORM"


class CommissionStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    PAID_EXTERNAL = "PAID_EXTERNAL"  # terminal


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    DEAD = "DEAD"  # dead-lettered after max attempts


# ── Structured sub-records (stored as JSON) ─────────────────────────────────

class PaymentDetails(BaseModel):
    """Where an affiliate wants to be paid."""
    account_name: Optional[str] = Field(None, max_length=200)
    account_number: Optional[str] = Field(None, max_length=64)
    bank_name: Optional[str] = Field(None, max_length=200)
    wallet_number: Optional[str] = Field(None, max_length=32)
    notes: Optional[str] = Field(None, max_length=1000)


class ReferralMetadata(BaseModel):
    """Request context captured with a referral click."""
    url: Optional[str] = Field(None, max_length=2000)
    ip_address: Optional[str] = Field(None, max_length=45)  # IPv6 support
    user_agent: Optional[str] = Field(None, max_length=500)
    source: Optional[str] = Field(None, max_length=100)


class ExternalPaymentRecord(BaseModel):
    """Proof of an out-of-band transfer settling a payout."""
    transaction_id: str = Field(..., min_length=1, max_length=255)
    external_reference: Optional[str] = Field(None, max_length=255)
    payment_date: Optional[datetime] = None
