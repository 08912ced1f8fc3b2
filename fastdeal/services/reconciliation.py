"""Payment initiation and convergence of gateway outcomes.

Three sources report outcomes for the same payment: client polling,
provider webhooks and the expiry sweep. Whichever terminal observation is
written first wins; later contradicting observations only land in the
attempts log.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fastdeal.core.config import Settings, get_settings
from fastdeal.core.exceptions import (
    ForbiddenError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from fastdeal.core.logging import bind_payment, get_logger
from fastdeal.core.pagination import Page, paginate
from fastdeal.gateways.base import GatewayClient, InitiationResult, NeutralStatus, StatusResult
from fastdeal.models.payment import Payment
from fastdeal.models.user import User
from fastdeal.services.ledger import PaymentLedger, parse_amount
from fastdeal.services.order_linkage import OrderLinkage
from fastdeal.storage.base import Stores

log = get_logger(__name__)

MOBILE_MONEY_METHODS = ("orange_money", "mtn_money")

# Webhook path segment -> payment method
WEBHOOK_PROVIDERS = {
    "card": "card",
    "orange-money": "orange_money",
    "mtn-money": "mtn_money",
}

# Terminal statuses that already agree with a neutral observation.
_AGREES = {
    "succeeded": ("completed", "refunded"),
    "failed": ("failed", "cancelled"),
}


@dataclass
class Initiation:
    payment: Payment
    result: InitiationResult


class ReconciliationController:
    def __init__(
        self,
        stores: Stores,
        gateways: dict[str, GatewayClient],
        ledger: PaymentLedger | None = None,
        linkage: OrderLinkage | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.stores = stores
        self.gateways = gateways
        self.ledger = ledger or PaymentLedger(stores.payments, self.settings)
        self.linkage = linkage or OrderLinkage(stores.orders)

    # ---- initiation ------------------------------------------------------

    async def initiate_payment(
        self,
        order_id: str,
        user: User,
        method: str,
        method_details: dict[str, Any] | None = None,
        amount: Any = None,
        currency: str | None = None,
    ) -> Initiation:
        method_details = dict(method_details or {})
        order = await self.stores.orders.find_by_id(order_id)
        if not order or order.buyer_id != user.id:
            raise NotFoundError("Order not found")
        if order.seller_id == user.id:
            raise ValidationError("You cannot pay for your own listing")
        if order.payment_status in ("paid", "refunded"):
            raise ValidationError("Order is already paid", details={"payment_status": order.payment_status})
        if order.status in ("cancelled", "refunded"):
            raise ValidationError("Order can no longer be paid", details={"status": order.status})
        gateway = self.gateways.get(method)
        if gateway is None:
            raise ValidationError(f"Online payment is not available for method {method}")

        currency = currency or order.currency
        if currency != order.currency:
            raise ValidationError("Currency does not match the order", details={"order_currency": order.currency})
        if amount is not None and parse_amount(amount, currency) != order.total_amount:
            raise ValidationError("Amount does not match the order total", details={"total": str(order.total_amount)})

        if method in MOBILE_MONEY_METHODS:
            payer_address = method_details.get("phone_number")
            if not payer_address:
                raise ValidationError("Phone number is required for mobile money")
        else:
            payer_address = user.email

        payment = await self.ledger.create(order, user, order.total_amount, currency, method, method_details)
        bind_payment(payment.reference)
        try:
            result = await gateway.initiate(
                payment.amount,
                payment.currency,
                payer_address,
                payment.reference,
                metadata={"orderId": order.id, "userId": user.id},
            )
        except GatewayError as e:
            log.warning(
                "gateway_initiation_failed",
                reference=payment.reference,
                provider=gateway.provider,
                error=e.message,
                retryable=e.retryable,
            )
            if e.retryable:
                # Outcome unknown: keep the payment pending so the caller can retry safely.
                await self.ledger.record_attempt(payment, "error", e.message, e.response)
            else:
                await self.ledger.mark_failed(payment, e.message, e.response)
            raise
        payment = await self.ledger.mark_processing(
            payment, gateway.provider, result.provider_transaction_id, result.raw_response
        )
        return Initiation(payment=payment, result=result)

    # ---- convergence -----------------------------------------------------

    async def _link_completed(self, payment: Payment) -> None:
        try:
            await self.linkage.on_completed(payment)
        except Exception as e:
            # Payment stays completed; the next completed observation re-runs the linkage.
            log.exception("order_link_failed", reference=payment.reference, order_id=payment.order_id)
            await self.ledger.record_attempt(payment, "completed", f"Order update failed: {e}")
            raise

    async def _record_conflict(
        self,
        payment: Payment,
        status: NeutralStatus,
        source: str,
        error_message: str | None,
        raw: Any,
    ) -> Payment:
        log.warning("terminal_conflict", reference=payment.reference, current=payment.status, observed=status, source=source)
        note = f"Ignored {status} from {source}: payment already {payment.status}"
        if error_message:
            note = f"{note} ({error_message})"
        return await self.ledger.record_attempt(payment, status, note, raw)

    async def apply_observation(
        self,
        payment: Payment,
        status: NeutralStatus,
        source: str,
        raw: Any = None,
        error_message: str | None = None,
    ) -> Payment:
        """Drive the ledger from one neutral gateway observation."""
        if status == "not_found":
            log.warning("gateway_transaction_not_found", reference=payment.reference, source=source)
            return payment
        if status not in _AGREES:
            return payment

        if payment.status in _AGREES[status]:
            if status == "succeeded" and payment.status == "completed":
                # Heals an order update that failed after the payment write; no-op otherwise.
                await self._link_completed(payment)
            return payment
        if payment.is_terminal:
            return await self._record_conflict(payment, status, source, error_message, raw)

        try:
            if status == "succeeded":
                payment, changed = await self.ledger.mark_completed(payment, raw)
                if changed:
                    await self._link_completed(payment)
            else:
                payment, changed = await self.ledger.mark_failed(payment, error_message or "Payment failed", raw)
                if changed:
                    await self.linkage.on_failed(payment)
        except InvalidTransitionError:
            # Another source wrote a different terminal status between our read and our write.
            current = await self.ledger.get(payment.reference)
            return await self._record_conflict(current, status, source, error_message, raw)
        return payment

    async def poll_status(self, payment: Payment) -> tuple[Payment, StatusResult | None]:
        """Ask the gateway for the current outcome and apply it. Safe to repeat."""
        bind_payment(payment.reference)
        gateway = self.gateways.get(payment.method)
        if gateway is None or not payment.gateway.transaction_id:
            return payment, None
        result = await gateway.check_status(payment.gateway.transaction_id)
        payment = await self.apply_observation(payment, result.status, "poll", result.raw_response)
        return payment, result

    async def handle_webhook(self, provider: str, payload: Any) -> Payment | None:
        """Apply a provider notification. Unknown events and payments are acknowledged and ignored."""
        method = WEBHOOK_PROVIDERS.get(provider)
        gateway = self.gateways.get(method) if method else None
        if gateway is None:
            raise NotFoundError(f"Unknown payment provider: {provider}")
        event = gateway.parse_webhook(payload)
        if event is None:
            log.info("webhook_ignored", provider=provider)
            return None

        payment = None
        if event.reference:
            payment = await self.stores.payments.get_by_reference(event.reference)
        if payment is None and event.provider_transaction_id:
            payment = await self.stores.payments.get_by_provider_transaction_id(event.provider_transaction_id)
        if payment is None:
            log.warning(
                "webhook_unmatched",
                provider=provider,
                reference=event.reference,
                transaction_id=event.provider_transaction_id,
            )
            return None
        bind_payment(payment.reference)
        return await self.apply_observation(payment, event.status, "webhook", event.raw_payload, event.error_message)

    # ---- caller operations -----------------------------------------------

    async def get_payment(self, reference: str, user: User) -> Payment:
        payment = await self.stores.payments.get_by_reference(reference)
        if not payment or (payment.user_id != user.id and user.role != "admin"):
            raise NotFoundError("Payment not found")
        return payment

    async def list_payments(self, user: User, page: int = 1, limit: int = 10) -> Page[Payment]:
        page, limit, offset = paginate(page, limit)
        items, total = await self.stores.payments.list_by_user(user.id, offset, limit)
        return Page[Payment](items=items, page=page, limit=limit, total=total)

    async def cancel_payment(self, reference: str, user: User) -> Payment:
        payment = await self.get_payment(reference, user)
        if payment.user_id != user.id:
            raise ForbiddenError("Only the payer can cancel a payment")
        payment, _ = await self.ledger.mark_cancelled(payment, "Cancelled by payer")
        return payment

    async def refund_payment(self, reference: str, amount: Any, reason: str, admin: User) -> Payment:
        if admin.role != "admin":
            raise ForbiddenError("Admin only")
        payment = await self.ledger.get(reference)
        payment = await self.ledger.mark_refunded(payment, payment.amount if amount is None else amount, reason)
        await self.linkage.on_refunded(payment)
        return payment

    # ---- expiry sweep ----------------------------------------------------

    async def sweep_expired(self, now: datetime | None = None, limit: int = 100) -> dict[str, int]:
        """Poll expired open payments once; purge the ones still open when configured to."""
        now = now or datetime.utcnow()
        stats = {"checked": 0, "resolved": 0, "purged": 0, "errors": 0}
        for payment in await self.stores.payments.list_expired(now, limit=limit):
            stats["checked"] += 1
            try:
                payment, _ = await self.poll_status(payment)
            except GatewayError as e:
                # Unknown outcome: keep the record for the next run.
                stats["errors"] += 1
                log.warning("sweep_poll_failed", reference=payment.reference, error=e.message)
                continue
            except Exception:
                stats["errors"] += 1
                log.exception("sweep_payment_failed", reference=payment.reference)
                continue
            if payment.is_terminal:
                stats["resolved"] += 1
            elif self.settings.purge_expired_payments:
                # A webhook may have resolved it while we polled; the store only deletes open payments.
                if await self.stores.payments.delete_expired(payment.reference, now):
                    stats["purged"] += 1
                else:
                    stats["resolved"] += 1
        log.info("sweep_done", **stats)
        return stats
