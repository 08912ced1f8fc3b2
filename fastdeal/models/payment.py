from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from fastdeal.models.money import Money

PaymentStatus = Literal["pending", "processing", "completed", "failed", "cancelled", "refunded"]
PaymentMethod = Literal["card", "orange_money", "mtn_money", "paypal", "bank_transfer"]
Currency = Literal["XOF", "USD", "EUR"]

METHODS = ("card", "orange_money", "mtn_money", "paypal", "bank_transfer")
OPEN_STATUSES = ("pending", "processing")
TERMINAL_STATUSES = ("completed", "failed", "cancelled", "refunded")


class PaymentAttempt(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    status: str
    error_message: str | None = None
    gateway_response: Any = None


class GatewayInfo(BaseModel):
    provider: str | None = None
    transaction_id: str | None = None
    response: Any = None


class Fees(BaseModel):
    platform_fee: Money = Decimal(0)
    gateway_fee: Money = Decimal(0)
    total_fees: Money = Decimal(0)


class Settlement(BaseModel):
    status: Literal["pending", "processing", "completed", "failed"] = "pending"
    amount: Money | None = None
    settled_at: datetime | None = None
    reference: str | None = None


class Refund(BaseModel):
    amount: Money
    reason: str = ""
    refunded_at: datetime = Field(default_factory=datetime.utcnow)
    refund_id: str


class Payment(BaseModel):
    """One attempt to move funds for one order. `reference` is the public identifier."""

    reference: str
    order_id: str
    user_id: str
    amount: Money
    currency: Currency
    method: PaymentMethod
    status: PaymentStatus = "pending"
    method_details: dict[str, Any] = Field(default_factory=dict)  # phone number, operator...
    gateway: GatewayInfo = Field(default_factory=GatewayInfo)
    fees: Fees = Field(default_factory=Fees)
    settlement: Settlement = Field(default_factory=Settlement)
    refund: Refund | None = None
    attempts: list[PaymentAttempt] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    expires_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: datetime | None = None) -> bool:
        """Past expiry without reaching a terminal status."""
        return not self.is_terminal and (now or datetime.utcnow()) >= self.expires_at

    def public_view(self) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "status": self.status,
            "amount": str(self.amount),
            "currency": self.currency,
            "method": self.method,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
            "failedAt": self.failed_at,
            "expiresAt": self.expires_at,
        }
