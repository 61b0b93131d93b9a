from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

PaymentStatus = Literal["PENDING", "CONFIRMED"]
ProviderStatus = Literal["paid", "unpaid", "unknown"]
ReturnOutcome = Literal[
    "confirmed",
    "already_confirmed",
    "pending",
    "status_unknown",
    "unknown_order",
    "persistence_failed",
    "error",
]


class LineItem(BaseModel):
    name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_value: Decimal = Field(ge=0)


class Customer(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class CheckoutRequest(BaseModel):
    order_reference: str = Field(min_length=1)
    # Emptiness is rejected by the link builder with InvalidOrderError.
    line_items: List[LineItem]
    customer: Customer = Field(default_factory=Customer)


class CheckoutLink(BaseModel):
    checkout_url: str
    qr_reference_url: Optional[str] = None


class Order(BaseModel):
    reference: str
    payment_status: PaymentStatus = "PENDING"
    receipt_url: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _confirmation_fields_together(self) -> "Order":
        has_receipt = self.receipt_url is not None
        has_time = self.confirmed_at is not None
        if has_receipt != has_time:
            raise ValueError("receipt_url and confirmed_at must be set together")
        if (self.payment_status == "CONFIRMED") != has_receipt:
            raise ValueError("only CONFIRMED orders carry receipt_url/confirmed_at")
        return self


class PaymentStatusResult(BaseModel):
    status: ProviderStatus
    receipt_url: Optional[str] = None
    order_reference: Optional[str] = None
    fetched_at: datetime


class AuditRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_reference: str
    receipt_url: str
    recorded_at: datetime


class RedirectTarget(BaseModel):
    location: str
    outcome: ReturnOutcome


class GatewayConfig(BaseModel):
    handle: str = ""
    title: str = "InfinitePay"
    description: str = ""
    enabled: bool = True


class GatewayInfo(BaseModel):
    title: str
    description: str
    enabled: bool
