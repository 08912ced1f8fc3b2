"""Card processor via the Stripe payment intents API."""

from decimal import Decimal
from typing import Any

import httpx

from fastdeal.core.config import Settings
from fastdeal.core.exceptions import GatewayAuthError, GatewayInitiationError, GatewayStatusError
from fastdeal.gateways.base import (
    GatewayClient,
    InitiationResult,
    StatusResult,
    WebhookEvent,
    json_body,
    raise_for_status,
    send,
    to_neutral_status,
)
from fastdeal.models.money import to_minor_units

EVENT_STATUSES = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "failed",
}


class CardGateway(GatewayClient):
    provider = "card"
    method = "card"

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self.http = http
        self.api_url = settings.stripe_api_url.rstrip("/")
        self.secret_key = settings.stripe_secret_key

    async def authenticate(self) -> str:
        # The secret API key is the bearer credential; there is no token exchange.
        if not self.secret_key:
            raise GatewayAuthError("Card payments are not configured", provider=self.provider)
        return self.secret_key

    async def initiate(
        self,
        amount: Decimal,
        currency: str,
        payer_address: str | None,
        reference: str,
        metadata: dict[str, str] | None = None,
    ) -> InitiationResult:
        key = await self.authenticate()
        form = {
            "amount": str(to_minor_units(amount, currency)),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
            "metadata[paymentReference]": reference,
        }
        for k, v in (metadata or {}).items():
            form[f"metadata[{k}]"] = v
        if payer_address:
            form["receipt_email"] = payer_address
        resp = await send(
            self.http, GatewayInitiationError, self.provider, "Failed to create payment intent",
            "POST", f"{self.api_url}/v1/payment_intents",
            data=form,
            headers={"Authorization": f"Bearer {key}", "Idempotency-Key": reference},
        )
        if resp.status_code == 401:
            raise GatewayAuthError("Card processor rejected the API key", provider=self.provider)
        raise_for_status(resp, GatewayInitiationError, self.provider, "Failed to create payment intent")
        data = json_body(resp, GatewayInitiationError, self.provider, "Payment intent")
        if not data.get("id"):
            raise GatewayInitiationError(
                "Payment intent response has no id", provider=self.provider, retryable=True, response=data
            )
        return InitiationResult(
            provider_transaction_id=data["id"],
            raw_response=data,
            redirect_or_instructions=data.get("client_secret"),
        )

    async def check_status(self, provider_transaction_id: str) -> StatusResult:
        key = await self.authenticate()
        resp = await send(
            self.http, GatewayStatusError, self.provider, "Failed to retrieve payment intent",
            "GET", f"{self.api_url}/v1/payment_intents/{provider_transaction_id}",
            headers={"Authorization": f"Bearer {key}"},
        )
        if resp.status_code == 404:
            return StatusResult(status="not_found")
        raise_for_status(resp, GatewayStatusError, self.provider, "Failed to retrieve payment intent")
        data = json_body(resp, GatewayStatusError, self.provider, "Payment intent")
        raw_status = data.get("status")
        return StatusResult(status=to_neutral_status(raw_status), raw_status=raw_status, raw_response=data)

    def parse_webhook(self, payload: Any) -> WebhookEvent | None:
        if not isinstance(payload, dict):
            return None
        status = EVENT_STATUSES.get(payload.get("type", ""))
        if status is None:
            return None
        intent = (payload.get("data") or {}).get("object") or {}
        error = None
        if status == "failed":
            error = (intent.get("last_payment_error") or {}).get("message") or "Payment failed"
        return WebhookEvent(
            status=status,
            reference=(intent.get("metadata") or {}).get("paymentReference"),
            provider_transaction_id=intent.get("id"),
            error_message=error,
            raw_payload=intent,
        )
