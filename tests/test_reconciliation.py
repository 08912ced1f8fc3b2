"""Initiation, polling, webhooks and the expiry sweep against fake gateways."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from fastdeal.core.exceptions import (
    GatewayInitiationError,
    GatewayStatusError,
    NotFoundError,
    ValidationError,
)
from fastdeal.gateways.base import StatusResult
from fastdeal.models.order import Order

pytestmark = pytest.mark.asyncio


async def _initiate(controller, order, buyer, method="orange_money"):
    init = await controller.initiate_payment(order.id, buyer, method, {"phone_number": "+2250700000000"})
    return init.payment


async def test_end_to_end_mobile_money_webhook(controller, stores, gateways, order, buyer):
    init = await controller.initiate_payment(
        order.id, buyer, "orange_money", {"phone_number": "+2250700000000"}, amount=60000
    )
    payment = init.payment
    assert init.result.provider_transaction_id == "abc123"
    assert payment.status == "processing"
    assert payment.gateway.transaction_id == "abc123"
    assert gateways["orange_money"].initiated[0]["payer_address"] == "+2250700000000"

    updated = await controller.handle_webhook(
        "orange-money", {"status": "SUCCESS", "reference": payment.reference, "transaction_id": "abc123"}
    )
    assert updated.status == "completed"
    stored_order = await stores.orders.find_by_id(order.id)
    assert stored_order.payment_status == "paid"
    assert stored_order.status == "confirmed"


async def test_initiate_rejects_foreign_order(controller, order, seller, stores):
    from fastdeal.models.user import User
    stranger = stores.users.add(User(id="stranger", email="x@example.com"))
    with pytest.raises(NotFoundError):
        await controller.initiate_payment(order.id, stranger, "orange_money", {"phone_number": "+22507"})
    with pytest.raises(NotFoundError):
        await controller.initiate_payment("missing", stranger, "orange_money", {"phone_number": "+22507"})


async def test_initiate_rejects_own_listing(controller, stores, buyer):
    stores.orders.add(
        Order(id="self", buyer_id=buyer.id, seller_id=buyer.id, total_amount=Decimal("100"), currency="XOF")
    )
    with pytest.raises(ValidationError):
        await controller.initiate_payment("self", buyer, "orange_money", {"phone_number": "+2250700000000"})


async def test_initiate_rejects_paid_order(controller, stores, order, buyer):
    order.payment_status = "paid"
    await stores.orders.save(order)
    with pytest.raises(ValidationError):
        await _initiate(controller, order, buyer)


@pytest.mark.parametrize(
    "method,details,amount",
    [
        ("paypal", {}, None),
        ("orange_money", {}, None),
        ("orange_money", {"phone_number": "+2250700000000"}, 50000),
    ],
)
async def test_initiate_validation(controller, gateways, order, buyer, method, details, amount):
    with pytest.raises(ValidationError):
        await controller.initiate_payment(order.id, buyer, method, details, amount=amount)
    assert gateways["orange_money"].initiated == []


async def test_initiate_currency_must_match_order(controller, order, buyer):
    with pytest.raises(ValidationError):
        await controller.initiate_payment(order.id, buyer, "card", currency="USD")


async def test_card_uses_buyer_email(controller, gateways, order, buyer):
    init = await controller.initiate_payment(order.id, buyer, "card")
    assert init.payment.method == "card"
    assert gateways["card"].initiated[0]["payer_address"] == buyer.email
    assert init.result.redirect_or_instructions


async def test_gateway_rejection_fails_payment(controller, stores, gateways, order, buyer):
    gateways["orange_money"].initiate_error = GatewayInitiationError(
        "Failed to initiate Orange Money payment (HTTP 400)", provider="orange_money", retryable=False
    )
    with pytest.raises(GatewayInitiationError):
        await _initiate(controller, order, buyer)
    reference = gateways["orange_money"].initiated[0]["reference"]
    payment = await stores.payments.get_by_reference(reference)
    assert payment.status == "failed"
    assert payment.failed_at is not None
    assert "HTTP 400" in payment.attempts[-1].error_message
    stored_order = await stores.orders.find_by_id(order.id)
    assert stored_order.status == "pending"
    assert stored_order.payment_status == "pending"


async def test_transport_error_keeps_payment_pending(controller, stores, gateways, order, buyer):
    gateways["orange_money"].initiate_error = GatewayInitiationError(
        "Failed to initiate Orange Money payment: ConnectTimeout", provider="orange_money", retryable=True
    )
    with pytest.raises(GatewayInitiationError):
        await _initiate(controller, order, buyer)
    reference = gateways["orange_money"].initiated[0]["reference"]
    payment = await stores.payments.get_by_reference(reference)
    assert payment.status == "pending"
    assert payment.failed_at is None
    assert payment.attempts[-1].status == "error"


async def test_poll_completes_and_is_idempotent(controller, stores, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    gateways["orange_money"].status = StatusResult(status="succeeded", raw_status="SUCCESSFUL", raw_response={})
    first, result = await controller.poll_status(payment)
    assert first.status == "completed"
    assert result.raw_status == "SUCCESSFUL"
    second, _ = await controller.poll_status(first)
    assert second.status == "completed"
    assert second.completed_at == first.completed_at
    assert len(second.attempts) == len(first.attempts)
    stored_order = await stores.orders.find_by_id(order.id)
    assert stored_order.payment_status == "paid"
    assert len(stored_order.timeline) == 1


async def test_poll_pending_changes_nothing(controller, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    polled, result = await controller.poll_status(payment)
    assert polled.status == "processing"
    assert result.status == "pending"


async def test_poll_not_found_changes_nothing(controller, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    gateways["orange_money"].status = StatusResult(status="not_found")
    polled, _ = await controller.poll_status(payment)
    assert polled.status == "processing"


async def test_poll_transport_error_propagates(controller, ledger, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    gateways["orange_money"].status = GatewayStatusError("timeout", provider="orange_money", retryable=True)
    with pytest.raises(GatewayStatusError):
        await controller.poll_status(payment)
    assert (await ledger.get(payment.reference)).status == "processing"


async def test_poll_without_transaction_skips_gateway(controller, ledger, gateways, order, buyer):
    payment = await ledger.create(order, buyer, order.total_amount, "XOF", "orange_money")
    polled, result = await controller.poll_status(payment)
    assert result is None
    assert polled.status == "pending"
    assert gateways["orange_money"].status_calls == 0


async def test_race_poll_success_then_webhook_failure(controller, ledger, stores, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    gateways["orange_money"].status = StatusResult(status="succeeded", raw_status="SUCCESSFUL")
    await controller.poll_status(payment)
    await controller.handle_webhook("orange-money", {"status": "FAILED", "reference": payment.reference})

    stored = await ledger.get(payment.reference)
    assert stored.status == "completed"
    assert stored.failed_at is None
    assert stored.attempts[-1].status == "failed"
    assert "Ignored failed from webhook" in stored.attempts[-1].error_message
    assert (await stores.orders.find_by_id(order.id)).payment_status == "paid"


async def test_race_webhook_failure_then_stale_poll_success(controller, ledger, stores, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    stale = await ledger.get(payment.reference)  # poll read the record before the webhook landed
    await controller.handle_webhook("orange-money", {"status": "FAILED", "reference": payment.reference})
    gateways["orange_money"].status = StatusResult(status="succeeded", raw_status="SUCCESSFUL")
    polled, _ = await controller.poll_status(stale)

    assert polled.status == "failed"
    stored = await ledger.get(payment.reference)
    assert stored.status == "failed"
    assert stored.completed_at is None
    assert stored.attempts[-1].status == "succeeded"
    stored_order = await stores.orders.find_by_id(order.id)
    assert stored_order.payment_status == "pending"
    assert stored_order.status == "pending"


async def test_webhook_unknown_reference_is_noop(controller, stores):
    result = await controller.handle_webhook("orange-money", {"status": "SUCCESS", "reference": "PAY_unknown"})
    assert result is None


async def test_webhook_without_outcome_is_ignored(controller):
    assert await controller.handle_webhook("orange-money", {"hello": "world"}) is None


async def test_webhook_unknown_provider(controller):
    with pytest.raises(NotFoundError):
        await controller.handle_webhook("wave", {"status": "SUCCESS"})


async def test_webhook_matches_on_transaction_id(controller, ledger, order, buyer):
    payment = await _initiate(controller, order, buyer)
    updated = await controller.handle_webhook("orange-money", {"status": "SUCCESS", "transaction_id": "abc123"})
    assert updated.reference == payment.reference
    assert updated.status == "completed"


async def test_webhook_redelivery_repairs_order(controller, stores, order, buyer):
    payment = await _initiate(controller, order, buyer)
    await controller.handle_webhook("orange-money", {"status": "SUCCESS", "reference": payment.reference})
    broken = await stores.orders.find_by_id(order.id)
    broken.payment_status = "pending"
    await stores.orders.save(broken)

    await controller.handle_webhook("orange-money", {"status": "SUCCESS", "reference": payment.reference})
    assert (await stores.orders.find_by_id(order.id)).payment_status == "paid"


async def test_cancel_and_refund(controller, stores, ledger, gateways, order, buyer, admin):
    payment = await _initiate(controller, order, buyer)
    cancelled = await controller.cancel_payment(payment.reference, buyer)
    assert cancelled.status == "cancelled"

    order_paid = await _initiate(controller, order, buyer)
    await controller.handle_webhook("orange-money", {"status": "SUCCESS", "reference": order_paid.reference})
    refunded = await controller.refund_payment(order_paid.reference, None, "item never shipped", admin)
    assert refunded.status == "refunded"
    assert refunded.refund.amount == Decimal("60000")
    assert (await stores.orders.find_by_id(order.id)).payment_status == "refunded"


async def test_list_payments_paginates(controller, order, buyer):
    for _ in range(3):
        await _initiate(controller, order, buyer)
    page = await controller.list_payments(buyer, page=1, limit=2)
    assert page.total == 3
    assert page.pages == 2
    assert len(page.items) == 2


async def test_sweep_resolves_or_purges(controller, ledger, stores, gateways, order, buyer):
    resolved = await _initiate(controller, order, buyer)
    abandoned = await ledger.create(order, buyer, order.total_amount, "XOF", "orange_money")
    gateways["orange_money"].status = StatusResult(status="succeeded", raw_status="SUCCESSFUL")

    stats = await controller.sweep_expired(now=datetime.utcnow() + timedelta(minutes=31))
    assert stats == {"checked": 2, "resolved": 1, "purged": 1, "errors": 0}
    assert (await ledger.get(resolved.reference)).status == "completed"
    assert await stores.payments.get_by_reference(abandoned.reference) is None


async def test_sweep_keeps_payment_on_gateway_error(controller, ledger, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    gateways["orange_money"].status = GatewayStatusError("down", provider="orange_money", retryable=True)
    stats = await controller.sweep_expired(now=datetime.utcnow() + timedelta(minutes=31))
    assert stats["errors"] == 1
    assert (await ledger.get(payment.reference)).status == "processing"


async def test_sweep_does_not_purge_payment_completed_during_poll(controller, stores, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)

    async def webhook_lands():
        await controller.handle_webhook("orange-money", {"status": "SUCCESS", "reference": payment.reference})

    # The gateway still answers pending; the webhook completed the payment in the meantime.
    gateways["orange_money"].before_status = webhook_lands
    stats = await controller.sweep_expired(now=datetime.utcnow() + timedelta(minutes=31))

    assert stats == {"checked": 1, "resolved": 1, "purged": 0, "errors": 0}
    stored = await stores.payments.get_by_reference(payment.reference)
    assert stored.status == "completed"
    assert (await stores.orders.find_by_id(order.id)).payment_status == "paid"


async def test_sweep_continues_after_order_store_failure(controller, ledger, stores, gateways, order, buyer, monkeypatch):
    first = await _initiate(controller, order, buyer)
    second = await _initiate(controller, order, buyer)
    gateways["orange_money"].status = StatusResult(status="succeeded", raw_status="SUCCESSFUL")

    saves = []
    real_save = stores.orders.save

    async def flaky_save(o):
        saves.append(o.id)
        if len(saves) == 1:
            raise RuntimeError("orders collection unavailable")
        return await real_save(o)

    monkeypatch.setattr(stores.orders, "save", flaky_save)
    stats = await controller.sweep_expired(now=datetime.utcnow() + timedelta(minutes=31))

    assert stats == {"checked": 2, "resolved": 1, "purged": 0, "errors": 1}
    assert (await ledger.get(first.reference)).status == "completed"
    assert (await ledger.get(second.reference)).status == "completed"
    assert (await stores.orders.find_by_id(order.id)).payment_status == "paid"


async def test_concurrent_poll_and_webhook_write_one_terminal_status(controller, ledger, stores, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    gateway = gateways["orange_money"]
    gateway.status = StatusResult(status="succeeded", raw_status="SUCCESSFUL")
    webhook_done = asyncio.Event()
    gateway.before_status = webhook_done.wait

    async def deliver_failure():
        await asyncio.sleep(0)
        await controller.handle_webhook("orange-money", {"status": "FAILED", "reference": payment.reference})
        webhook_done.set()

    (polled, _), _ = await asyncio.gather(controller.poll_status(payment), deliver_failure())

    stored = await ledger.get(payment.reference)
    assert polled.status == stored.status == "failed"
    assert stored.completed_at is None
    assert [a.status for a in stored.attempts].count("failed") == 1
    assert stored.attempts[-1].status == "succeeded"
    assert "Ignored succeeded from poll" in stored.attempts[-1].error_message
    assert (await stores.orders.find_by_id(order.id)).payment_status == "pending"


async def test_concurrent_successes_complete_once(controller, ledger, stores, gateways, order, buyer):
    payment = await _initiate(controller, order, buyer)
    gateway = gateways["orange_money"]
    gateway.status = StatusResult(status="succeeded", raw_status="SUCCESSFUL")
    webhook_done = asyncio.Event()
    gateway.before_status = webhook_done.wait

    async def deliver_success():
        await asyncio.sleep(0)
        await controller.handle_webhook("orange-money", {"status": "SUCCESS", "reference": payment.reference})
        webhook_done.set()

    await asyncio.gather(controller.poll_status(payment), deliver_success())

    stored = await ledger.get(payment.reference)
    assert stored.status == "completed"
    first_writes = [a for a in stored.attempts if a.status == "completed" and a.error_message is None]
    assert len(first_writes) == 1
    assert stored.completed_at == first_writes[0].timestamp
    assert len((await stores.orders.find_by_id(order.id)).timeline) == 1
