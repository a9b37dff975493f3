"""Request/response models for the settlement HTTP API."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from settlement.models import (
    CommissionType, ExternalPaymentRecord, PaymentDetails,
)


# ── Requests ────────────────────────────────────────────────────────────────

class RegisterAffiliateRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=36)
    company_id: Optional[str] = Field(None, max_length=36)
    commission_type: CommissionType = CommissionType.PERCENTAGE
    commission_rate: Optional[float] = Field(None, ge=0, le=100)
    min_payout: Optional[Decimal] = Field(None, ge=0)
    payment_method: Optional[str] = Field(None, max_length=50)
    payment_details: Optional[PaymentDetails] = None


class StatusUpdateRequest(BaseModel):
    # status name, or true/false for ACTIVE/SUSPENDED
    status: Union[bool, str]


class CommissionRateRequest(BaseModel):
    commission_rate: float = Field(..., ge=0, le=100)


class TrackReferralRequest(BaseModel):
    code: Optional[str] = Field(None, max_length=16)
    customer_id: Optional[str] = Field(None, max_length=36)
    url: Optional[str] = Field(None, max_length=2000)
    source: Optional[str] = Field(None, max_length=100)


class MarkupRequest(BaseModel):
    product_id: str
    markup: Decimal = Field(..., ge=0)


class MarkupUpdateRequest(BaseModel):
    markup: Decimal = Field(..., ge=0)


class ProfileUpdateRequest(BaseModel):
    payment_method: Optional[str] = Field(None, max_length=50)
    payment_details: Optional[PaymentDetails] = None
    min_payout: Optional[Decimal] = Field(None, ge=0)


class PayoutRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: Optional[str] = Field(None, max_length=50)
    payment_details: Optional[PaymentDetails] = None


class RecordExternalPayoutRequest(ExternalPaymentRecord):
    pass


# ── Responses ───────────────────────────────────────────────────────────────

class AffiliateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    company_id: Optional[str] = None
    affiliate_code: str
    commission_type: str
    commission_rate: float
    status: str
    total_clicks: int
    total_sales: int
    total_earnings: Decimal
    paid_earnings: Decimal
    pending_earnings: Decimal
    conversion_rate: float
    min_payout: Decimal
    payment_method: Optional[str] = None
    payment_details: Optional[dict] = None
    created_at: Optional[datetime] = None


class ReferralOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    affiliate_id: str
    customer_id: Optional[str] = None
    referral_code: str
    referral_url: Optional[str] = None
    source: Optional[str] = None
    converted: bool
    converted_at: Optional[datetime] = None
    order_id: Optional[str] = None
    created_at: datetime


class AffiliateProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    affiliate_id: str
    product_id: str
    base_price: Decimal
    markup: Decimal
    final_price: Decimal
    is_active: bool


class CommissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    company_id: str
    affiliate_id: Optional[str] = None
    merchant_id: Optional[str] = None
    type: str
    amount: Decimal
    order_total: Decimal
    status: str
    payout_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class PayoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    affiliate_id: str
    amount: Decimal
    allocated_amount: Decimal
    payment_method: Optional[str] = None
    status: str
    transaction_id: Optional[str] = None
    external_reference: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    quantity: int
    sell_price: Decimal


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: Optional[str] = None
    customer_id: Optional[str] = None
    source: Optional[str] = None
    status: str
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    created_at: Optional[datetime] = None
    items: list[OrderItemOut] = []


class AffiliateOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order: OrderOut
    commissions: list[CommissionOut]
