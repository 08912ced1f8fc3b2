"""Provider notifications. Always acknowledged unless the body fails verification."""

import json

from fastapi import APIRouter, Depends, Header, Request

from fastdeal.core.exceptions import ValidationError
from fastdeal.core.logging import get_logger
from fastdeal.core.security import verify_card_webhook
from fastdeal.deps import get_controller
from fastdeal.services.reconciliation import ReconciliationController

router = APIRouter()
log = get_logger(__name__)


async def _dispatch(controller: ReconciliationController, provider: str, body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except ValueError:
        log.warning("webhook_ignored", provider=provider, reason="malformed_body")
        return {"received": True}
    await controller.handle_webhook(provider, payload)
    return {"received": True}


@router.post("/webhook/card")
async def card_webhook(
    request: Request,
    signature: str | None = Header(None, alias="Stripe-Signature"),
    controller: ReconciliationController = Depends(get_controller),
):
    body = await request.body()
    settings = controller.settings
    if not verify_card_webhook(
        body, signature, settings.stripe_webhook_secret, settings.stripe_webhook_tolerance_seconds
    ):
        log.warning("webhook_signature_invalid", provider="card")
        raise ValidationError("Invalid webhook signature")
    return await _dispatch(controller, "card", body)


@router.post("/webhook/orange-money")
async def orange_money_webhook(request: Request, controller: ReconciliationController = Depends(get_controller)):
    return await _dispatch(controller, "orange-money", await request.body())


@router.post("/webhook/mtn-money")
async def mtn_money_webhook(request: Request, controller: ReconciliationController = Depends(get_controller)):
    return await _dispatch(controller, "mtn-money", await request.body())
