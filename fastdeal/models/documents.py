"""Beanie documents for the Mongo backend.

Each document extends the plain domain model, so services keep working with
`Payment`, `Order` and `User` whatever the store. Orders and users are owned by
the marketplace and keep their ObjectId `_id`.
"""

from beanie import Document, PydanticObjectId
from pymongo import ASCENDING, DESCENDING, IndexModel

from fastdeal.models.order import Order
from fastdeal.models.payment import Payment
from fastdeal.models.user import User


class PaymentDocument(Payment, Document):
    class Settings:
        name = "payments"
        indexes = [
            IndexModel([("reference", ASCENDING)], unique=True),
            IndexModel([("gateway.transaction_id", ASCENDING)]),
            [("order_id", 1)],
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("status", ASCENDING), ("expires_at", ASCENDING)]),
        ]


class OrderDocument(Order, Document):
    id: PydanticObjectId | None = None  # type: ignore[assignment]

    class Settings:
        name = "orders"

    def to_order(self) -> Order:
        return Order.model_validate({**self.model_dump(exclude={"id", "revision_id"}), "id": str(self.id)})


class UserDocument(User, Document):
    id: PydanticObjectId | None = None  # type: ignore[assignment]

    class Settings:
        name = "users"

    def to_user(self) -> User:
        return User.model_validate({**self.model_dump(exclude={"id", "revision_id"}), "id": str(self.id)})
