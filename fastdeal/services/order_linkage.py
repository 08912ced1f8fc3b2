"""Keeps Order.payment_status / Order.status in step with the payment outcome."""

from fastdeal.core.logging import get_logger
from fastdeal.models.order import FULFILMENT_SEQUENCE, Order
from fastdeal.models.payment import Payment
from fastdeal.storage.base import OrderStore

log = get_logger(__name__)


def _before_confirmed(status: str) -> bool:
    return status in FULFILMENT_SEQUENCE and FULFILMENT_SEQUENCE.index(status) < FULFILMENT_SEQUENCE.index("confirmed")


class OrderLinkage:
    def __init__(self, orders: OrderStore) -> None:
        self.orders = orders

    async def _load(self, payment: Payment) -> Order | None:
        order = await self.orders.find_by_id(payment.order_id)
        if order is None:
            log.warning("order_missing", reference=payment.reference, order_id=payment.order_id)
        return order

    async def on_completed(self, payment: Payment) -> Order | None:
        """Mark paid; confirm only orders that have not reached confirmed yet. Safe to repeat."""
        order = await self._load(payment)
        if order is None:
            return None
        if order.payment_status == "refunded":
            return order
        changed = order.payment_status != "paid"
        order.payment_status = "paid"
        if _before_confirmed(order.status):
            order.update_status("confirmed", note=f"Payment {payment.reference} completed")
            changed = True
        if changed:
            await self.orders.save(order)
            log.info("order_linked", reference=payment.reference, order_id=order.id, order_status=order.status)
        return order

    async def on_failed(self, payment: Payment) -> Order | None:
        # A failed payment never cancels the order; retry or expiry is decided elsewhere.
        log.info("order_left_unchanged", reference=payment.reference, order_id=payment.order_id)
        return None

    async def on_refunded(self, payment: Payment) -> Order | None:
        order = await self._load(payment)
        if order is None:
            return None
        if order.payment_status != "refunded":
            order.payment_status = "refunded"
            order.updated_at = payment.refund.refunded_at if payment.refund else order.updated_at
            await self.orders.save(order)
            log.info("order_refunded", reference=payment.reference, order_id=order.id)
        return order
