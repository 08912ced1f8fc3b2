"""Pagination helpers."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


def paginate(page: int, limit: int, max_limit: int = 100) -> tuple[int, int, int]:
    """Clamp page/limit; return (page, limit, offset)."""
    limit = max(1, min(limit, max_limit))
    page = max(1, page)
    return page, limit, (page - 1) * limit
