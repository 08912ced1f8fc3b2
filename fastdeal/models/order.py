from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from fastdeal.models.money import Money

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded", "disputed"]
OrderPaymentStatus = Literal["pending", "paid", "failed", "refunded"]

# Fulfilment order; anything at or after "confirmed" is never moved back.
FULFILMENT_SEQUENCE = ("pending", "confirmed", "processing", "shipped", "delivered")


class TimelineEntry(BaseModel):
    status: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    note: str = ""
    updated_by: str | None = None


class Order(BaseModel):
    """The slice of a marketplace order the payment flow reads and writes."""

    id: str
    order_number: str = ""
    buyer_id: str
    seller_id: str
    total_amount: Money
    currency: Literal["XOF", "USD", "EUR"] = "XOF"
    status: OrderStatus = "pending"
    payment_status: OrderPaymentStatus = "pending"
    timeline: list[TimelineEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def update_status(self, new_status: str, note: str = "", updated_by: str | None = None) -> None:
        self.status = new_status
        self.timeline.append(
            TimelineEntry(status=new_status, note=note or f"Status changed to {new_status}", updated_by=updated_by)
        )
        self.updated_at = datetime.utcnow()
