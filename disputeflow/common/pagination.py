"""Reusable pagination for list endpoints."""

from __future__ import annotations

import math
from typing import Any, Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class PaginationParams:
    """Inject as a FastAPI dependency for any list endpoint."""

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number"),
        page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    ):
        self.page = page
        self.page_size = page_size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items: list[T], total: int, params: PaginationParams) -> "PaginatedResponse[T]":
        return cls(
            items=items,
            total=total,
            page=params.page,
            page_size=params.page_size,
            total_pages=math.ceil(total / params.page_size) if total else 0,
        )


async def paginate(
    db: AsyncSession,
    query: Select,
    params: PaginationParams,
) -> tuple[list[Any], int]:
    """Apply pagination to an ordered query and return (items, total_count)."""
    count_q = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await db.execute(count_q)).scalar() or 0

    query = query.offset(params.offset).limit(params.page_size)

    result = await db.execute(query)
    items = list(result.scalars().all())
    return items, total
