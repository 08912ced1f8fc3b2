"""Payment ledger: the single writer of payment status.

pending -> processing -> completed | failed
pending | processing -> cancelled
completed -> refunded

Every status write is a conditional update on the current status, so two
concurrent terminal observations cannot both land.
"""

import secrets
import string
import time
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, NoReturn

from fastdeal.core.config import Settings, get_settings
from fastdeal.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from fastdeal.core.logging import get_logger
from fastdeal.models.money import CURRENCIES, CURRENCY_DECIMALS, quantize
from fastdeal.models.order import Order
from fastdeal.models.payment import (
    METHODS,
    OPEN_STATUSES,
    Fees,
    Payment,
    PaymentAttempt,
    Refund,
)
from fastdeal.models.user import User
from fastdeal.storage.base import PaymentStore

log = get_logger(__name__)

_ALPHABET = string.ascii_lowercase + string.digits
REFERENCE_RETRIES = 3


def new_reference() -> str:
    """PAY_<epoch ms>_<9 random base36 chars>."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"PAY_{int(time.time() * 1000)}_{suffix}"


def parse_amount(value: Any, currency: str) -> Decimal:
    """Validate an amount against the currency's minor unit; raise ValidationError."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("Amount must be a number", details={"amount": str(value)}) from e
    if not amount.is_finite():
        raise ValidationError("Amount must be a number", details={"amount": str(value)})
    if amount < 0:
        raise ValidationError("Amount cannot be negative", details={"amount": str(amount)})
    if currency in CURRENCY_DECIMALS and amount != quantize(amount, currency):
        raise ValidationError(
            f"Amount has more than {CURRENCY_DECIMALS[currency]} decimal places for {currency}",
            details={"amount": str(amount), "currency": currency},
        )
    return amount


class PaymentLedger:
    def __init__(
        self,
        payments: PaymentStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.payments = payments
        self.settings = settings or get_settings()
        self.clock = clock

    async def get(self, reference: str) -> Payment:
        payment = await self.payments.get_by_reference(reference)
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    def _fees(self, amount: Decimal, currency: str) -> Fees:
        platform_fee = quantize(amount * Decimal(str(self.settings.platform_fee_percent)) / 100, currency)
        return Fees(platform_fee=platform_fee, gateway_fee=Decimal(0), total_fees=platform_fee)

    async def create(
        self,
        order: Order,
        user: User,
        amount: Any,
        currency: str,
        method: str,
        method_details: dict[str, Any] | None = None,
    ) -> Payment:
        if currency not in CURRENCIES:
            raise ValidationError(f"Unsupported currency: {currency}", details={"allowed": list(CURRENCIES)})
        if method not in METHODS:
            raise ValidationError(f"Unsupported payment method: {method}", details={"allowed": list(METHODS)})
        amount = parse_amount(amount, currency)
        now = self.clock()
        for _ in range(REFERENCE_RETRIES):
            payment = Payment(
                reference=new_reference(),
                order_id=order.id,
                user_id=user.id,
                amount=amount,
                currency=currency,
                method=method,
                method_details=method_details or {},
                fees=self._fees(amount, currency),
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(minutes=self.settings.payment_expiry_minutes),
            )
            try:
                payment = await self.payments.insert(payment)
            except ConflictError:
                continue
            log.info(
                "payment_created",
                reference=payment.reference,
                order_id=order.id,
                method=method,
                amount=str(amount),
                currency=currency,
            )
            return payment
        raise ConflictError("Could not allocate a unique payment reference")

    async def _reject(self, reference: str, target: str) -> NoReturn:
        """CAS lost and the current status cannot reach `target`."""
        current = await self.get(reference)
        raise InvalidTransitionError(
            f"Cannot move payment from {current.status} to {target}",
            current=current.status,
            target=target,
        )

    async def mark_processing(
        self,
        payment: Payment,
        provider: str,
        transaction_id: str,
        gateway_response: Any = None,
    ) -> Payment:
        updated = await self.payments.transition(
            payment.reference,
            ("pending",),
            {
                "status": "processing",
                "gateway.provider": provider,
                "gateway.transaction_id": transaction_id,
                "gateway.response": gateway_response,
            },
            PaymentAttempt(timestamp=self.clock(), status="processing", gateway_response=gateway_response),
        )
        if updated is None:
            current = await self.get(payment.reference)
            if current.status == "processing" and current.gateway.transaction_id == transaction_id:
                return current
            await self._reject(payment.reference, "processing")
        log.info("payment_processing", reference=payment.reference, provider=provider, transaction_id=transaction_id)
        return updated

    async def mark_completed(self, payment: Payment, gateway_response: Any = None) -> tuple[Payment, bool]:
        """Returns (payment, changed). Completing a completed payment is a no-op apart from an attempt entry."""
        now = self.clock()
        updated = await self.payments.transition(
            payment.reference,
            OPEN_STATUSES,
            {"status": "completed", "completed_at": now, "gateway.response": gateway_response},
            PaymentAttempt(timestamp=now, status="completed", gateway_response=gateway_response),
        )
        if updated is not None:
            log.info("payment_completed", reference=payment.reference)
            return updated, True
        current = await self.get(payment.reference)
        if current.status == "completed":
            current = await self.record_attempt(current, "completed", "Duplicate completion", gateway_response)
            return current, False
        await self._reject(payment.reference, "completed")

    async def mark_failed(
        self,
        payment: Payment,
        error_message: str,
        gateway_response: Any = None,
    ) -> tuple[Payment, bool]:
        """Returns (payment, changed). Failing a failed payment keeps the first failed_at."""
        now = self.clock()
        updated = await self.payments.transition(
            payment.reference,
            OPEN_STATUSES,
            {"status": "failed", "failed_at": now, "gateway.response": gateway_response},
            PaymentAttempt(timestamp=now, status="failed", error_message=error_message, gateway_response=gateway_response),
        )
        if updated is not None:
            log.info("payment_failed", reference=payment.reference, error=error_message)
            return updated, True
        current = await self.get(payment.reference)
        if current.status == "failed":
            current = await self.record_attempt(current, "failed", error_message, gateway_response)
            return current, False
        await self._reject(payment.reference, "failed")

    async def mark_cancelled(self, payment: Payment, reason: str = "Cancelled") -> tuple[Payment, bool]:
        now = self.clock()
        updated = await self.payments.transition(
            payment.reference,
            OPEN_STATUSES,
            {"status": "cancelled", "cancelled_at": now},
            PaymentAttempt(timestamp=now, status="cancelled", error_message=reason),
        )
        if updated is not None:
            log.info("payment_cancelled", reference=payment.reference, reason=reason)
            return updated, True
        current = await self.get(payment.reference)
        if current.status == "cancelled":
            return current, False
        await self._reject(payment.reference, "cancelled")

    async def mark_refunded(self, payment: Payment, amount: Any, reason: str = "") -> Payment:
        amount = parse_amount(amount, payment.currency)
        if amount == 0 or amount > payment.amount:
            raise ValidationError(
                "Refund amount must be positive and not exceed the payment amount",
                details={"amount": str(amount), "paid": str(payment.amount)},
            )
        now = self.clock()
        refund = Refund(amount=amount, reason=reason, refunded_at=now, refund_id=f"RFD_{secrets.token_hex(8)}")
        updated = await self.payments.transition(
            payment.reference,
            ("completed",),
            {"status": "refunded", "refund": refund},
            PaymentAttempt(timestamp=now, status="refunded", error_message=reason or None),
        )
        if updated is None:
            await self._reject(payment.reference, "refunded")
        log.info("payment_refunded", reference=payment.reference, amount=str(amount), refund_id=refund.refund_id)
        return updated

    async def record_attempt(
        self,
        payment: Payment,
        status: str,
        error_message: str | None = None,
        gateway_response: Any = None,
    ) -> Payment:
        """Append to the attempts log whatever the current status."""
        updated = await self.payments.append_attempt(
            payment.reference,
            PaymentAttempt(
                timestamp=self.clock(),
                status=status,
                error_message=error_message,
                gateway_response=gateway_response,
            ),
        )
        if updated is None:
            raise NotFoundError("Payment not found")
        return updated
