from datetime import datetime
from typing import Any, Iterable

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import LTE, In, Push, Set
from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.errors import DuplicateKeyError

from fastdeal.core.config import Settings
from fastdeal.core.exceptions import ConflictError
from fastdeal.db.init import init_db
from fastdeal.models.documents import OrderDocument, PaymentDocument, UserDocument
from fastdeal.models.order import Order
from fastdeal.models.payment import OPEN_STATUSES, Payment, PaymentAttempt
from fastdeal.models.user import User
from fastdeal.storage.base import OrderStore, PaymentStore, Stores, UserStore


class MongoPaymentStore(PaymentStore):
    """Payments on beanie. Returned objects are PaymentDocuments (a Payment subclass)."""

    def __init__(self, client: AsyncMongoClient | None = None) -> None:
        self.client = client

    async def insert(self, payment: Payment) -> Payment:
        doc = PaymentDocument(**payment.model_dump())
        try:
            await doc.insert()
        except DuplicateKeyError as e:
            raise ConflictError("Duplicate payment reference", details={"reference": payment.reference}) from e
        return doc

    async def get_by_reference(self, reference: str) -> Payment | None:
        return await PaymentDocument.find_one(PaymentDocument.reference == reference)

    async def get_by_provider_transaction_id(self, transaction_id: str) -> Payment | None:
        return await PaymentDocument.find_one(PaymentDocument.gateway.transaction_id == transaction_id)

    async def transition(
        self,
        reference: str,
        from_statuses: Iterable[str],
        fields: dict[str, Any],
        attempt: PaymentAttempt | None = None,
    ) -> Payment | None:
        updates: list[Any] = [Set({**fields, "updated_at": datetime.utcnow()})]
        if attempt is not None:
            updates.append(Push({PaymentDocument.attempts: attempt}))
        return await PaymentDocument.find_one(
            PaymentDocument.reference == reference,
            In(PaymentDocument.status, list(from_statuses)),
        ).update(*updates, response_type=UpdateResponse.NEW_DOCUMENT)

    async def append_attempt(self, reference: str, attempt: PaymentAttempt) -> Payment | None:
        return await PaymentDocument.find_one(PaymentDocument.reference == reference).update(
            Push({PaymentDocument.attempts: attempt}),
            Set({PaymentDocument.updated_at: datetime.utcnow()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

    async def update_fields(self, reference: str, fields: dict[str, Any]) -> Payment | None:
        return await PaymentDocument.find_one(PaymentDocument.reference == reference).update(
            Set({**fields, "updated_at": datetime.utcnow()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

    async def list_by_user(self, user_id: str, offset: int, limit: int) -> tuple[list[Payment], int]:
        total = await PaymentDocument.find(PaymentDocument.user_id == user_id).count()
        items = (
            await PaymentDocument.find(PaymentDocument.user_id == user_id)
            .sort(-PaymentDocument.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return items, total

    async def list_expired(self, now: datetime, limit: int = 100) -> list[Payment]:
        return (
            await PaymentDocument.find(
                In(PaymentDocument.status, list(OPEN_STATUSES)),
                LTE(PaymentDocument.expires_at, now),
            )
            .sort(+PaymentDocument.expires_at)
            .limit(limit)
            .to_list()
        )

    async def delete_expired(self, reference: str, now: datetime) -> bool:
        result = await PaymentDocument.find_one(
            PaymentDocument.reference == reference,
            In(PaymentDocument.status, list(OPEN_STATUSES)),
            LTE(PaymentDocument.expires_at, now),
        ).delete()
        return bool(result and result.deleted_count)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()


def _object_id(entity_id: str) -> PydanticObjectId | None:
    return PydanticObjectId(entity_id) if ObjectId.is_valid(entity_id) else None


class MongoOrderStore(OrderStore):
    async def find_by_id(self, order_id: str) -> Order | None:
        oid = _object_id(order_id)
        doc = await OrderDocument.get(oid) if oid else None
        return doc.to_order() if doc else None

    async def save(self, order: Order) -> Order:
        # $set only: the marketplace keeps fields on the order this service never reads.
        await OrderDocument.find_one(OrderDocument.id == _object_id(order.id)).update(
            Set(order.model_dump(exclude={"id"}))
        )
        return order


class MongoUserStore(UserStore):
    async def find_by_id(self, user_id: str) -> User | None:
        oid = _object_id(user_id)
        doc = await UserDocument.get(oid) if oid else None
        return doc.to_user() if doc else None


async def mongo_stores(settings: Settings) -> Stores:
    client = await init_db(settings)
    return Stores(payments=MongoPaymentStore(client), orders=MongoOrderStore(), users=MongoUserStore())
