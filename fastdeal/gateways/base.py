"""Provider-neutral gateway contract.

Each provider adapter speaks its own auth and payment protocol and reports
back in one vocabulary: pending, succeeded, failed (plus not_found for
unknown transaction ids). Adapters never raise on a business decline; only
a failed synchronous call raises.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Literal

import httpx

from fastdeal.core.exceptions import GatewayError

NeutralStatus = Literal["pending", "succeeded", "failed", "not_found"]

SUCCEEDED_STATUSES = frozenset({"success", "successful", "succeeded", "completed", "paid"})
FAILED_STATUSES = frozenset({
    "failed", "failure", "rejected", "declined", "cancelled", "canceled", "expired", "timeout",
})


def to_neutral_status(raw: Any) -> NeutralStatus:
    """Map a provider status string to the neutral vocabulary; unknown values stay pending."""
    value = str(raw or "").strip().lower()
    if value in SUCCEEDED_STATUSES:
        return "succeeded"
    if value in FAILED_STATUSES:
        return "failed"
    return "pending"


@dataclass
class InitiationResult:
    provider_transaction_id: str
    raw_response: Any
    redirect_or_instructions: str | None = None


@dataclass
class StatusResult:
    status: NeutralStatus
    raw_status: str | None = None
    raw_response: Any = None


@dataclass
class WebhookEvent:
    status: NeutralStatus
    reference: str | None = None
    provider_transaction_id: str | None = None
    error_message: str | None = None
    raw_payload: Any = field(default=None, repr=False)


class GatewayClient(ABC):
    """One payment provider. Credentials are fetched per call and never cached."""

    provider: str
    method: str

    @abstractmethod
    async def authenticate(self) -> str:
        """Return a bearer credential; raise GatewayAuthError."""
        ...

    @abstractmethod
    async def initiate(
        self,
        amount: Decimal,
        currency: str,
        payer_address: str | None,
        reference: str,
        metadata: dict[str, str] | None = None,
    ) -> InitiationResult:
        """Start a payment; raise GatewayInitiationError when the call itself fails."""
        ...

    @abstractmethod
    async def check_status(self, provider_transaction_id: str) -> StatusResult:
        """Look up a transaction; raise GatewayStatusError on transport failure."""
        ...

    @abstractmethod
    def parse_webhook(self, payload: Any) -> WebhookEvent | None:
        """Map a notification body to a WebhookEvent; None for events that carry no payment outcome."""
        ...


async def send(
    http: httpx.AsyncClient,
    error_cls: type[GatewayError],
    provider: str,
    message: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Issue a request; transport failures become `error_cls` with retryable=True."""
    try:
        return await http.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise error_cls(f"{message}: {e.__class__.__name__}", provider=provider, retryable=True) from e


def raise_for_status(
    resp: httpx.Response,
    error_cls: type[GatewayError],
    provider: str,
    message: str,
    ok: tuple[int, ...] = (200, 201),
) -> None:
    """Provider 5xx is an unknown outcome (retryable); 4xx is a definite rejection."""
    if resp.status_code in ok:
        return
    raise error_cls(
        f"{message} (HTTP {resp.status_code})",
        provider=provider,
        retryable=resp.status_code >= 500,
        response=json_or_text(resp),
    )


def json_or_text(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def json_body(resp: httpx.Response, error_cls: type[GatewayError], provider: str, message: str) -> dict:
    try:
        data = resp.json()
    except ValueError as e:
        raise error_cls(f"{message}: malformed response", provider=provider, retryable=True) from e
    if not isinstance(data, dict):
        raise error_cls(f"{message}: malformed response", provider=provider, retryable=True, response=data)
    return data


def amount_value(amount: Decimal, currency: str) -> int | str:
    """JSON amount for mobile-money APIs: whole number for XOF, decimal string otherwise."""
    if currency == "XOF":
        return int(amount)
    return str(amount)
