from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from fastdeal.core.config import Settings, get_settings
from fastdeal.models.order import Order
from fastdeal.models.payment import Payment, PaymentAttempt
from fastdeal.models.user import User


class PaymentStore(ABC):
    """Payment persistence. `transition` is the only way status is written."""

    @abstractmethod
    async def insert(self, payment: Payment) -> Payment:
        """Persist a new payment; raise ConflictError if the reference exists."""
        ...

    @abstractmethod
    async def get_by_reference(self, reference: str) -> Payment | None:
        ...

    @abstractmethod
    async def get_by_provider_transaction_id(self, transaction_id: str) -> Payment | None:
        ...

    @abstractmethod
    async def transition(
        self,
        reference: str,
        from_statuses: Iterable[str],
        fields: dict[str, Any],
        attempt: PaymentAttempt | None = None,
    ) -> Payment | None:
        """Apply `fields` only if the current status is in `from_statuses`.

        Single conditional write. Returns the updated payment, or None when
        the status no longer matches (or the payment does not exist).
        """
        ...

    @abstractmethod
    async def append_attempt(self, reference: str, attempt: PaymentAttempt) -> Payment | None:
        ...

    @abstractmethod
    async def update_fields(self, reference: str, fields: dict[str, Any]) -> Payment | None:
        """Write non-status fields unconditionally."""
        ...

    @abstractmethod
    async def list_by_user(self, user_id: str, offset: int, limit: int) -> tuple[list[Payment], int]:
        """Newest first; returns (items, total)."""
        ...

    @abstractmethod
    async def list_expired(self, now: datetime, limit: int = 100) -> list[Payment]:
        """Non-terminal payments whose expires_at has passed."""
        ...

    @abstractmethod
    async def delete_expired(self, reference: str, now: datetime) -> bool:
        """Delete only while the payment is still open and past expiry. True if deleted."""
        ...


class OrderStore(ABC):
    @abstractmethod
    async def find_by_id(self, order_id: str) -> Order | None:
        ...

    @abstractmethod
    async def save(self, order: Order) -> Order:
        ...


class UserStore(ABC):
    @abstractmethod
    async def find_by_id(self, user_id: str) -> User | None:
        ...


@dataclass
class Stores:
    payments: PaymentStore
    orders: OrderStore
    users: UserStore

    async def close(self) -> None:
        close = getattr(self.payments, "close", None)
        if close is not None:
            await close()


async def get_stores(settings: Settings | None = None) -> Stores:
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        from fastdeal.storage.memory import memory_stores
        return memory_stores()
    from fastdeal.storage.mongo import mongo_stores
    return await mongo_stores(settings)
