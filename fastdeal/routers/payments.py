from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from fastdeal.deps import get_controller, get_current_user, require_admin
from fastdeal.models.user import User
from fastdeal.services.reconciliation import Initiation, ReconciliationController

router = APIRouter()

PHONE_PATTERN = r"^\+?[0-9]{8,15}$"


class CardIntentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")
    amount: Decimal | None = None
    currency: Literal["XOF", "USD", "EUR"] | None = None


class MobileMoneyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")
    phone_number: str = Field(alias="phoneNumber", pattern=PHONE_PATTERN)
    amount: Decimal | None = None


class RefundRequest(BaseModel):
    amount: Decimal | None = None  # full refund when omitted
    reason: str = ""


def _initiation_response(init: Initiation, message: str) -> dict:
    return {
        "message": message,
        "paymentReference": init.payment.reference,
        "providerTransactionId": init.result.provider_transaction_id,
        "providerRedirectOrInstructions": init.result.redirect_or_instructions,
        "status": init.payment.status,
    }


@router.post("/card/create-intent")
async def card_create_intent(
    body: CardIntentRequest,
    user: User = Depends(get_current_user),
    controller: ReconciliationController = Depends(get_controller),
):
    """Create a card payment intent; the client confirms it with providerRedirectOrInstructions (client secret)."""
    init = await controller.initiate_payment(
        body.order_id, user, "card", amount=body.amount, currency=body.currency
    )
    return _initiation_response(init, "Card payment created.")


@router.post("/orange-money/initiate")
async def orange_money_initiate(
    body: MobileMoneyRequest,
    user: User = Depends(get_current_user),
    controller: ReconciliationController = Depends(get_controller),
):
    init = await controller.initiate_payment(
        body.order_id,
        user,
        "orange_money",
        {"phone_number": body.phone_number, "operator": "orange"},
        amount=body.amount,
    )
    return _initiation_response(init, "Orange Money payment initiated. Please complete the payment on your phone.")


@router.post("/mtn-money/initiate")
async def mtn_money_initiate(
    body: MobileMoneyRequest,
    user: User = Depends(get_current_user),
    controller: ReconciliationController = Depends(get_controller),
):
    init = await controller.initiate_payment(
        body.order_id,
        user,
        "mtn_money",
        {"phone_number": body.phone_number, "operator": "mtn"},
        amount=body.amount,
    )
    return _initiation_response(init, "MTN Money payment initiated. Please complete the payment on your phone.")


@router.get("/status/{reference}")
async def payment_status(
    reference: str,
    user: User = Depends(get_current_user),
    controller: ReconciliationController = Depends(get_controller),
):
    """Poll the gateway and return the (possibly just updated) payment."""
    payment = await controller.get_payment(reference, user)
    payment, result = await controller.poll_status(payment)
    gateway_status = None
    if result is not None:
        gateway_status = {"status": result.status, "rawStatus": result.raw_status}
    return {"payment": payment.public_view(), "gatewayStatus": gateway_status}


@router.get("/my-payments")
async def my_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    controller: ReconciliationController = Depends(get_controller),
):
    result = await controller.list_payments(user, page, limit)
    return {
        "payments": [p.public_view() for p in result.items],
        "pagination": {"page": result.page, "limit": result.limit, "total": result.total, "pages": result.pages},
    }


@router.post("/{reference}/cancel")
async def cancel_payment(
    reference: str,
    user: User = Depends(get_current_user),
    controller: ReconciliationController = Depends(get_controller),
):
    payment = await controller.cancel_payment(reference, user)
    return {"payment": payment.public_view()}


@router.post("/{reference}/refund")
async def refund_payment(
    reference: str,
    body: RefundRequest,
    admin: User = Depends(require_admin),
    controller: ReconciliationController = Depends(get_controller),
):
    """Admin: record a refund on a completed payment."""
    payment = await controller.refund_payment(reference, body.amount, body.reason, admin)
    return {"payment": payment.public_view(), "refund": payment.refund.model_dump(mode="json") if payment.refund else None}
