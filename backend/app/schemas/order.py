"""Dining order schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, Field, PlainSerializer

from app.models.order import OrderStatus

# Money goes out as a JSON number; Decimal would serialize as a string
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class OrderLineCreate(BaseModel):
    """A line to add to an order."""

    menu_item_id: int
    quantity: int = Field(gt=0)
    cooking_point_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    side_ids: List[int] = []


class OrderCreate(BaseModel):
    """Order creation schema. An order opens with at least one line."""

    table_id: int
    diners_count: int = Field(default=1, gt=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    items: List[OrderLineCreate] = Field(min_length=1)


class OrderUpdate(BaseModel):
    diners_count: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    expected_version: Optional[int] = None


class OrderItemAdd(OrderLineCreate):
    expected_version: Optional[int] = None


class QuantityUpdate(BaseModel):
    """New quantity for a line. Zero removes the line."""

    quantity: int = Field(ge=0)
    expected_version: Optional[int] = None


class QuantityRemove(BaseModel):
    amount: int = Field(gt=0)
    expected_version: Optional[int] = None


class SidesReplace(BaseModel):
    side_ids: List[int]
    expected_version: Optional[int] = None


class StatusUpdate(BaseModel):
    status: OrderStatus
    expected_version: Optional[int] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    expected_version: Optional[int] = None


class TransferRequest(BaseModel):
    """Move an order to another table.

    ``confirm_occupied`` must be true when the destination already has an
    active order.
    """

    new_table_id: int = Field(gt=0)
    confirm_occupied: bool = False
    expected_version: Optional[int] = None


class OrderItemSideResponse(BaseModel):
    id: int
    side_id: int
    quantity: int

    model_config = {"from_attributes": True}


class OrderItemResponse(BaseModel):
    id: int
    order_id: int
    menu_item_id: int
    quantity: int
    unit_price: Money
    subtotal: Money
    cooking_point_id: Optional[int] = None
    notes: Optional[str] = None
    sides: List[OrderItemSideResponse] = []

    model_config = {"from_attributes": True}


class OrderPaymentSummary(BaseModel):
    """Payment as listed on an order's detail."""

    id: int
    payment_method_id: int
    total_paid: Money
    change_amount: Money
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: int
    table_id: int
    owner_id: Optional[int] = None
    diners_count: int
    status: OrderStatus
    subtotal: Money
    tax_amount: Money
    total_amount: Money
    tip_amount: Money
    grand_total: Money
    paid_amount: Money
    change_amount: Money
    payment_status: str
    notes: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = []
    payments: List[OrderPaymentSummary] = []

    model_config = {"from_attributes": True}


class OrderTotalsResponse(BaseModel):
    order_id: int
    subtotal: Money
    tax_amount: Money
    total_amount: Money
