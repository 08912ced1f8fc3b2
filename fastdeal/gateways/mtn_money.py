"""MTN MoMo collection API (mobile-money operator B): Basic-auth token exchange."""

import uuid
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
    json_or_text,
    raise_for_status,
    send,
    to_neutral_status,
)


def _reason(value: Any) -> str | None:
    # MTN sends reason either as a string or as {"code": ..., "message": ...}
    if isinstance(value, dict):
        return value.get("message") or value.get("code")
    return str(value) if value else None


class MtnMoneyGateway(GatewayClient):
    provider = "mtn_money"
    method = "mtn_money"

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self.http = http
        self.base_url = settings.mtn_money_api_url.rstrip("/")
        self.subscription_key = settings.mtn_money_subscription_key
        self.user_id = settings.mtn_money_user_id
        self.api_key = settings.mtn_money_api_key
        self.environment = settings.mtn_money_environment
        self.backend_url = settings.backend_url.rstrip("/")

    async def authenticate(self) -> str:
        if not (self.base_url and self.subscription_key and self.user_id and self.api_key):
            raise GatewayAuthError("MTN Mobile Money is not configured", provider=self.provider)
        resp = await send(
            self.http, GatewayAuthError, self.provider, "Failed to get MTN Money access token",
            "POST", f"{self.base_url}/collection/token/",
            auth=(self.user_id, self.api_key),
            headers={"Ocp-Apim-Subscription-Key": self.subscription_key},
        )
        raise_for_status(resp, GatewayAuthError, self.provider, "Failed to get MTN Money access token")
        data = json_body(resp, GatewayAuthError, self.provider, "MTN Money token")
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise GatewayAuthError("MTN Money token response has no access_token", provider=self.provider)
        return token

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "X-Target-Environment": self.environment,
            "Ocp-Apim-Subscription-Key": self.subscription_key,
        }

    async def initiate(
        self,
        amount: Decimal,
        currency: str,
        payer_address: str | None,
        reference: str,
        metadata: dict[str, str] | None = None,
    ) -> InitiationResult:
        token = await self.authenticate()
        # The caller chooses the transaction id; MTN requires a UUID4.
        reference_id = str(uuid.uuid4())
        resp = await send(
            self.http, GatewayInitiationError, self.provider, "Failed to initiate MTN Money payment",
            "POST", f"{self.base_url}/collection/v1_0/requesttopay",
            json={
                "amount": str(amount_value(amount, currency)),
                "currency": currency,
                "externalId": reference,
                "payer": {"partyIdType": "MSISDN", "partyId": (payer_address or "").lstrip("+")},
                "payerMessage": f"Payment for FastDeal order {reference}",
                "payeeNote": f"FastDeal payment {reference}",
            },
            headers={
                **self._headers(token),
                "X-Reference-Id": reference_id,
                "X-Callback-Url": f"{self.backend_url}/v1/payments/webhook/mtn-money",
            },
        )
        raise_for_status(resp, GatewayInitiationError, self.provider, "Failed to initiate MTN Money payment", ok=(202,))
        return InitiationResult(
            provider_transaction_id=reference_id,
            raw_response={"status_code": resp.status_code, "reference_id": reference_id, "body": json_or_text(resp)},
            redirect_or_instructions="Approve the payment request on your phone.",
        )

    async def check_status(self, provider_transaction_id: str) -> StatusResult:
        token = await self.authenticate()
        resp = await send(
            self.http, GatewayStatusError, self.provider, "Failed to check MTN Money payment status",
            "GET", f"{self.base_url}/collection/v1_0/requesttopay/{provider_transaction_id}",
            headers=self._headers(token),
        )
        if resp.status_code == 404:
            return StatusResult(status="not_found")
        raise_for_status(resp, GatewayStatusError, self.provider, "Failed to check MTN Money payment status")
        data = json_body(resp, GatewayStatusError, self.provider, "MTN Money status")
        raw_status = data.get("status")
        return StatusResult(status=to_neutral_status(raw_status), raw_status=raw_status, raw_response=data)

    def parse_webhook(self, payload: Any) -> WebhookEvent | None:
        if not isinstance(payload, dict) or "status" not in payload:
            return None
        status = to_neutral_status(payload.get("status"))
        return WebhookEvent(
            status=status,
            reference=payload.get("externalId"),
            provider_transaction_id=payload.get("referenceId"),
            error_message=(_reason(payload.get("reason")) or "Payment failed") if status == "failed" else None,
            raw_payload=payload,
        )
