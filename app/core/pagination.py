"""Pagination helpers for ledger listings."""

from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int
    total: int | None = None

    @computed_field
    @property
    def has_more(self) -> bool:
        if self.total is None:
            return len(self.items) == self.limit
        return self.offset + len(self.items) < self.total


def paginate(limit: int, offset: int, max_limit: int = 200) -> tuple[int, int]:
    """Clamp limit/offset; return (limit, offset)."""
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset
