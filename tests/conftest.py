import os
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory stores by default; only the Mongo store contract tests reach MONGODB_URI
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "fastdeal_test")

from fastdeal.core.config import Settings  # noqa: E402
from fastdeal.gateways.base import (  # noqa: E402
    GatewayClient,
    InitiationResult,
    StatusResult,
    WebhookEvent,
    to_neutral_status,
)
from fastdeal.models.order import Order  # noqa: E402
from fastdeal.models.user import User  # noqa: E402
from fastdeal.services.ledger import PaymentLedger  # noqa: E402
from fastdeal.services.reconciliation import ReconciliationController  # noqa: E402
from fastdeal.storage.memory import memory_stores  # noqa: E402


class FakeGateway(GatewayClient):
    """Scriptable gateway: set `initiate_error` or `status` before the call."""

    def __init__(self, method: str, transaction_id: str) -> None:
        self.provider = method
        self.method = method
        self.transaction_id = transaction_id
        self.initiate_error: Exception | None = None
        self.status: StatusResult | Exception = StatusResult(status="pending", raw_status="PENDING")
        self.initiated: list[dict[str, Any]] = []
        self.status_calls = 0
        # Awaited inside check_status, before the status is returned
        self.before_status: Callable[[], Awaitable[Any]] | None = None

    async def authenticate(self) -> str:
        return "token"

    async def initiate(self, amount, currency, payer_address, reference, metadata=None) -> InitiationResult:
        self.initiated.append(
            {"amount": amount, "currency": currency, "payer_address": payer_address, "reference": reference}
        )
        if self.initiate_error is not None:
            raise self.initiate_error
        return InitiationResult(
            provider_transaction_id=self.transaction_id,
            raw_response={"transaction_id": self.transaction_id},
            redirect_or_instructions="https://pay.example/checkout",
        )

    async def check_status(self, provider_transaction_id: str) -> StatusResult:
        self.status_calls += 1
        if self.before_status is not None:
            await self.before_status()
        if isinstance(self.status, Exception):
            raise self.status
        return self.status

    def parse_webhook(self, payload: Any) -> WebhookEvent | None:
        if not isinstance(payload, dict) or "status" not in payload:
            return None
        return WebhookEvent(
            status=to_neutral_status(payload["status"]),
            reference=payload.get("reference"),
            provider_transaction_id=payload.get("transaction_id"),
            error_message=payload.get("reason"),
            raw_payload=payload,
        )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        store_backend="memory",
        payment_expiry_minutes=30,
        platform_fee_percent=0.0,
        purge_expired_payments=True,
        stripe_webhook_secret="whsec_test",
    )


@pytest.fixture
def stores():
    return memory_stores()


@pytest.fixture
def buyer(stores) -> User:
    return stores.users.add(User(id="buyer-1", email="buyer@example.com", name="Awa"))


@pytest.fixture
def seller(stores) -> User:
    return stores.users.add(User(id="seller-1", email="seller@example.com", name="Koffi"))


@pytest.fixture
def admin(stores) -> User:
    return stores.users.add(User(id="admin-1", email="admin@example.com", role="admin"))


@pytest.fixture
def order(stores, buyer, seller) -> Order:
    return stores.orders.add(
        Order(
            id="order-1",
            order_number="FD2410190001",
            buyer_id=buyer.id,
            seller_id=seller.id,
            total_amount=Decimal("60000"),
            currency="XOF",
        )
    )


@pytest.fixture
def gateways() -> dict[str, FakeGateway]:
    return {
        "orange_money": FakeGateway("orange_money", "abc123"),
        "mtn_money": FakeGateway("mtn_money", "7f1c2b9e-mtn"),
        "card": FakeGateway("card", "pi_123"),
    }


@pytest.fixture
def ledger(stores, settings) -> PaymentLedger:
    return PaymentLedger(stores.payments, settings)


@pytest.fixture
def controller(stores, gateways, ledger, settings) -> ReconciliationController:
    return ReconciliationController(stores, gateways, ledger=ledger, settings=settings)


@pytest_asyncio.fixture
async def client(controller) -> AsyncGenerator[AsyncClient, None]:
    from fastdeal.deps import get_controller
    from fastdeal.main import app

    app.dependency_overrides[get_controller] = lambda: controller
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def session_headers():
    """Cookie header for a logged-in user."""
    from fastdeal.core.security import create_session_cookie
    from fastdeal.deps import SESSION_COOKIE_NAME

    def _headers(user: User) -> dict[str, str]:
        return {"Cookie": f"{SESSION_COOKIE_NAME}={create_session_cookie({'user_id': user.id})}"}

    return _headers
