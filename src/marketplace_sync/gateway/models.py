"""Models for records read from the payment gateway."""

import enum
import json
from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, field_validator


class GatewayResource(str, enum.Enum):
    """Paginated gateway list endpoints."""
    TRANSACTION = "transaction"
    TRANSFER = "transfer"
    SETTLEMENT = "settlement"


class GatewayCustomer(BaseModel):
    """Customer attached to a transaction."""
    email: str = Field(..., description="Customer email as entered at checkout")


class TransactionMetadata(BaseModel):
    """Checkout metadata written when the payment was initialized."""
    vendor_id: Optional[str] = None
    order_id: Optional[str] = None
    mobile_number: Optional[str] = None
    network_provider: Optional[str] = None
    delivery_address: Optional[str] = None
    phone: Optional[str] = None

    class Config:
        extra = "allow"

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # Paystack echoes whatever the checkout sent, ids included, as numbers or strings
        if value is None or value == "":
            return None
        if isinstance(value, (int, float)):
            return str(value)
        return value


class GatewaySubaccount(BaseModel):
    """Vendor sub-merchant a transaction was split to."""
    subaccount_code: Optional[str] = None
    business_name: Optional[str] = None


class GatewayTransaction(BaseModel):
    """A transaction as listed by ``GET /transaction``."""
    id: int = Field(..., description="Gateway transaction ID")
    reference: str = Field(..., description="Gateway-assigned unique reference")
    amount: int = Field(..., description="Amount in minor units")
    currency: str = Field(default="GHS")
    status: str
    channel: Optional[str] = Field(default=None, description="card, mobile_money, bank, ...")
    customer: GatewayCustomer
    metadata: TransactionMetadata = Field(default_factory=TransactionMetadata)
    subaccount: Optional[GatewaySubaccount] = None
    paid_at: Optional[datetime] = None
    gateway_response: Optional[str] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value: Any) -> Any:
        # Paystack returns metadata as an object, an empty string, or a JSON-encoded string
        if value is None or value == "":
            return {}
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except ValueError:
                return {}
            return decoded if isinstance(decoded, dict) else {}
        return value

    @field_validator("subaccount", mode="before")
    @classmethod
    def _coerce_subaccount(cls, value: Any) -> Any:
        if not value:
            return None
        return value

    @field_validator("paid_at", mode="before")
    @classmethod
    def _coerce_paid_at(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @property
    def subaccount_code(self) -> Optional[str]:
        if self.subaccount is None:
            return None
        return self.subaccount.subaccount_code


class RecipientDetails(BaseModel):
    """Destination account of a transfer."""
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    bank_name: Optional[str] = None


class GatewayRecipient(BaseModel):
    """Transfer recipient."""
    name: Optional[str] = None
    email: Optional[str] = None
    details: RecipientDetails = Field(default_factory=RecipientDetails)

    @field_validator("details", mode="before")
    @classmethod
    def _coerce_details(cls, value: Any) -> Any:
        return value or {}


class GatewayTransfer(BaseModel):
    """A transfer as listed by ``GET /transfer``."""
    id: int
    reference: str
    amount: int = Field(..., description="Amount in minor units")
    currency: str = Field(default="GHS")
    status: str
    recipient: GatewayRecipient = Field(default_factory=GatewayRecipient)
    reason: Optional[str] = None

    @field_validator("recipient", mode="before")
    @classmethod
    def _coerce_recipient(cls, value: Any) -> Any:
        return value or {}


class GatewayBalance(BaseModel):
    """Balance for one currency, from ``GET /balance``."""
    currency: str
    balance: int = Field(..., description="Balance in minor units")


class GatewaySettlement(BaseModel):
    """A settlement batch, from ``GET /settlement``."""
    id: int
    status: str
    currency: str
    total_amount: int = 0
    effective_amount: int = 0
    total_fees: int = 0
    settlement_date: Optional[datetime] = None
    subaccount: Optional[GatewaySubaccount] = None

    @field_validator("subaccount", mode="before")
    @classmethod
    def _coerce_subaccount(cls, value: Any) -> Any:
        if not value:
            return None
        return value


class DrainResult(BaseModel):
    """Everything collected by one page drain."""
    resource: GatewayResource
    items: List[Dict[str, Any]] = Field(default_factory=list)
    pages_fetched: int = 0
    truncated: bool = Field(default=False, description="True when a page failed and the drain stopped early")
    error: Optional[str] = None

    def __len__(self) -> int:
        return len(self.items)
