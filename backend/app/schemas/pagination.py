"""Paged order listing."""

from typing import List

from pydantic import BaseModel
from sqlalchemy.orm import Query

from app.schemas.order import OrderResponse


class OrderPage(BaseModel):
    """One page of the order listing. ``total`` counts every matching order."""

    items: List[OrderResponse]
    total: int
    skip: int
    limit: int
    has_more: bool

    @classmethod
    def from_query(cls, query: Query, skip: int, limit: int) -> "OrderPage":
        total = query.order_by(None).count()
        orders = query.offset(skip).limit(limit).all()
        return cls(
            items=[OrderResponse.model_validate(o) for o in orders],
            total=total,
            skip=skip,
            limit=limit,
            has_more=(skip + len(orders)) < total,
        )
