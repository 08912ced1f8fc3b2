"""Process-local stores for tests and local development."""

from datetime import datetime
from typing import Any, Iterable

from fastdeal.core.exceptions import ConflictError
from fastdeal.models.order import Order
from fastdeal.models.payment import Payment, PaymentAttempt
from fastdeal.models.user import User
from fastdeal.storage.base import OrderStore, PaymentStore, Stores, UserStore


def _set_path(payment: Payment, path: str, value: Any) -> None:
    # Dotted keys ("gateway.transaction_id") mirror the Mongo $set syntax.
    *parents, leaf = path.split(".")
    target: Any = payment
    for name in parents:
        target = getattr(target, name)
    setattr(target, leaf, value)


class MemoryPaymentStore(PaymentStore):
    def __init__(self) -> None:
        self._items: dict[str, Payment] = {}

    async def insert(self, payment: Payment) -> Payment:
        if payment.reference in self._items:
            raise ConflictError("Duplicate payment reference", details={"reference": payment.reference})
        self._items[payment.reference] = payment.model_copy(deep=True)
        return payment.model_copy(deep=True)

    async def get_by_reference(self, reference: str) -> Payment | None:
        p = self._items.get(reference)
        return p.model_copy(deep=True) if p else None

    async def get_by_provider_transaction_id(self, transaction_id: str) -> Payment | None:
        for p in self._items.values():
            if p.gateway.transaction_id == transaction_id:
                return p.model_copy(deep=True)
        return None

    async def transition(
        self,
        reference: str,
        from_statuses: Iterable[str],
        fields: dict[str, Any],
        attempt: PaymentAttempt | None = None,
    ) -> Payment | None:
        # No await between the status check and the write: atomic on the event loop.
        p = self._items.get(reference)
        if p is None or p.status not in tuple(from_statuses):
            return None
        for key, value in fields.items():
            _set_path(p, key, value)
        if attempt is not None:
            p.attempts.append(attempt.model_copy(deep=True))
        p.updated_at = datetime.utcnow()
        return p.model_copy(deep=True)

    async def append_attempt(self, reference: str, attempt: PaymentAttempt) -> Payment | None:
        p = self._items.get(reference)
        if p is None:
            return None
        p.attempts.append(attempt.model_copy(deep=True))
        p.updated_at = datetime.utcnow()
        return p.model_copy(deep=True)

    async def update_fields(self, reference: str, fields: dict[str, Any]) -> Payment | None:
        p = self._items.get(reference)
        if p is None:
            return None
        for key, value in fields.items():
            _set_path(p, key, value)
        p.updated_at = datetime.utcnow()
        return p.model_copy(deep=True)

    async def list_by_user(self, user_id: str, offset: int, limit: int) -> tuple[list[Payment], int]:
        mine = sorted(
            (p for p in self._items.values() if p.user_id == user_id),
            key=lambda p: p.created_at,
            reverse=True,
        )
        return [p.model_copy(deep=True) for p in mine[offset:offset + limit]], len(mine)

    async def list_expired(self, now: datetime, limit: int = 100) -> list[Payment]:
        expired = [p for p in self._items.values() if p.is_expired(now)]
        expired.sort(key=lambda p: p.expires_at)
        return [p.model_copy(deep=True) for p in expired[:limit]]

    async def delete_expired(self, reference: str, now: datetime) -> bool:
        p = self._items.get(reference)
        if p is None or not p.is_expired(now):
            return False
        del self._items[reference]
        return True


class MemoryOrderStore(OrderStore):
    def __init__(self) -> None:
        self._items: dict[str, Order] = {}

    async def find_by_id(self, order_id: str) -> Order | None:
        o = self._items.get(order_id)
        return o.model_copy(deep=True) if o else None

    async def save(self, order: Order) -> Order:
        self._items[order.id] = order.model_copy(deep=True)
        return order

    def add(self, order: Order) -> Order:
        self._items[order.id] = order.model_copy(deep=True)
        return order


class MemoryUserStore(UserStore):
    def __init__(self) -> None:
        self._items: dict[str, User] = {}

    async def find_by_id(self, user_id: str) -> User | None:
        return self._items.get(user_id)

    def add(self, user: User) -> User:
        self._items[user.id] = user
        return user


def memory_stores() -> Stores:
    return Stores(payments=MemoryPaymentStore(), orders=MemoryOrderStore(), users=MemoryUserStore())
