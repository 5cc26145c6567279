"""Write models accepted by the store."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class OrderInput(BaseModel):
    """Fields for a new order."""
    buyer_id: str
    vendor_id: str
    product_id: str
    quantity: int = Field(default=1, ge=1)
    total_amount: Decimal = Field(..., description="Order total in major units")
    status: str = "pending"
    shipping_address: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None


class PaymentInput(BaseModel):
    """Fields for a new payment."""
    reference: str
    paystack_reference: str
    order_id: str
    vendor_id: str
    buyer_id: str
    amount: Decimal = Field(..., description="Payment amount in major units")
    currency: str
    payment_method: str
    status: str
    paid_at: Optional[datetime] = None
    gateway_response: Optional[str] = None
    mobile_number: Optional[str] = None
    network_provider: Optional[str] = None


class PaymentPatch(BaseModel):
    """The only payment fields the sync may change after creation.

    paid_at and gateway_response left as None keep the stored values.
    """
    status: str
    paid_at: Optional[datetime] = None
    gateway_response: Optional[str] = None


class PayoutInput(BaseModel):
    """Fields for a new payout."""
    vendor_id: str
    amount: Decimal = Field(..., description="Payout amount in major units")
    status: str
    momo_number: str = ""
    transaction_id: str


class PayoutPatch(BaseModel):
    """The only payout field the sync may change after creation."""
    status: str
