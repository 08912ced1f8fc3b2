"""Orange Money web payment (mobile-money operator A): OAuth client credentials."""

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
    amount_value,
    json_body,
    raise_for_status,
    send,
    to_neutral_status,
)

PAY_PATH = "/omcoreapis/1.0.2/mp/pay"
STATUS_PATH = "/omcoreapis/1.0.2/mp/paymentstatus"


class OrangeMoneyGateway(GatewayClient):
    provider = "orange_money"
    method = "orange_money"

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self.http = http
        self.base_url = settings.orange_money_api_url.rstrip("/")
        self.client_id = settings.orange_money_client_id
        self.client_secret = settings.orange_money_client_secret
        self.merchant_code = settings.orange_money_merchant_code
        self.frontend_url = settings.frontend_url.rstrip("/")
        self.backend_url = settings.backend_url.rstrip("/")

    async def authenticate(self) -> str:
        if not (self.base_url and self.client_id and self.client_secret):
            raise GatewayAuthError("Orange Money is not configured", provider=self.provider)
        resp = await send(
            self.http, GatewayAuthError, self.provider, "Failed to get Orange Money access token",
            "POST", f"{self.base_url}/oauth/token",
            json={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
        raise_for_status(resp, GatewayAuthError, self.provider, "Failed to get Orange Money access token")
        data = json_body(resp, GatewayAuthError, self.provider, "Orange Money token")
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise GatewayAuthError("Orange Money token response has no access_token", provider=self.provider)
        return token

    async def initiate(
        self,
        amount: Decimal,
        currency: str,
        payer_address: str | None,
        reference: str,
        metadata: dict[str, str] | None = None,
    ) -> InitiationResult:
        token = await self.authenticate()
        resp = await send(
            self.http, GatewayInitiationError, self.provider, "Failed to initiate Orange Money payment",
            "POST", f"{self.base_url}{PAY_PATH}",
            json={
                "merchant_code": self.merchant_code,
                "amount": amount_value(amount, currency),
                "currency": currency,
                "msisdn": payer_address,
                "reference": reference,
                "return_url": f"{self.frontend_url}/payment/success",
                "cancel_url": f"{self.frontend_url}/payment/cancel",
                "notif_url": f"{self.backend_url}/v1/payments/webhook/orange-money",
            },
            headers={"Authorization": f"Bearer {token}"},
        )
        raise_for_status(resp, GatewayInitiationError, self.provider, "Failed to initiate Orange Money payment")
        data = json_body(resp, GatewayInitiationError, self.provider, "Orange Money payment")
        transaction_id = data.get("transaction_id")
        if not transaction_id:
            raise GatewayInitiationError(
                "Orange Money response has no transaction_id", provider=self.provider, retryable=True, response=data
            )
        return InitiationResult(
            provider_transaction_id=str(transaction_id),
            raw_response=data,
            redirect_or_instructions=data.get("payment_url"),
        )

    async def check_status(self, provider_transaction_id: str) -> StatusResult:
        token = await self.authenticate()
        resp = await send(
            self.http, GatewayStatusError, self.provider, "Failed to check Orange Money payment status",
            "GET", f"{self.base_url}{STATUS_PATH}/{provider_transaction_id}",
            headers={"Authorization": f"Bearer {token}"},
        )
        if resp.status_code == 404:
            return StatusResult(status="not_found")
        raise_for_status(resp, GatewayStatusError, self.provider, "Failed to check Orange Money payment status")
        data = json_body(resp, GatewayStatusError, self.provider, "Orange Money status")
        raw_status = data.get("status")
        return StatusResult(status=to_neutral_status(raw_status), raw_status=raw_status, raw_response=data)

    def parse_webhook(self, payload: Any) -> WebhookEvent | None:
        if not isinstance(payload, dict) or "status" not in payload:
            return None
        status = to_neutral_status(payload.get("status"))
        return WebhookEvent(
            status=status,
            reference=payload.get("reference"),
            provider_transaction_id=payload.get("transaction_id"),
            error_message="Payment failed" if status == "failed" else None,
            raw_payload=payload,
        )
