import httpx

from fastdeal.core.config import Settings
from fastdeal.gateways.base import (
    GatewayClient,
    InitiationResult,
    StatusResult,
    WebhookEvent,
    to_neutral_status,
)
from fastdeal.gateways.card import CardGateway
from fastdeal.gateways.mtn_money import MtnMoneyGateway
from fastdeal.gateways.orange_money import OrangeMoneyGateway


def build_gateways(settings: Settings, http: httpx.AsyncClient) -> dict[str, GatewayClient]:
    """Gateway clients keyed by payment method."""
    clients: list[GatewayClient] = [
        CardGateway(http, settings),
        OrangeMoneyGateway(http, settings),
        MtnMoneyGateway(http, settings),
    ]
    return {c.method: c for c in clients}


__all__ = [
    "GatewayClient",
    "InitiationResult",
    "StatusResult",
    "WebhookEvent",
    "to_neutral_status",
    "CardGateway",
    "OrangeMoneyGateway",
    "MtnMoneyGateway",
    "build_gateways",
]
