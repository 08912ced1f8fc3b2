from fastdeal.models.order import Order, TimelineEntry
from fastdeal.models.payment import (
    Fees,
    GatewayInfo,
    Payment,
    PaymentAttempt,
    Refund,
    Settlement,
)
from fastdeal.models.user import User

__all__ = [
    "Order",
    "TimelineEntry",
    "Payment",
    "PaymentAttempt",
    "GatewayInfo",
    "Fees",
    "Settlement",
    "Refund",
    "User",
]
