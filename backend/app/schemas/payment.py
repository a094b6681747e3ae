"""Payment schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.models.payment import PaymentStatus
from app.schemas.order import Money, OrderResponse


class PaymentMethodResponse(BaseModel):
    id: int
    name: str
    code: str
    display_order: int

    model_config = {"from_attributes": True}


class SettlementCreate(BaseModel):
    """Settlement request. Tip is either a percentage of the subtotal or a fixed amount."""

    order_id: int
    payment_method_id: int = Field(ge=1)
    tip_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    tip_amount: Optional[Decimal] = Field(default=None, ge=0)
    received_amount: Optional[Decimal] = Field(default=None, ge=0)
    reference_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)
    expected_version: Optional[int] = None

    @model_validator(mode="after")
    def one_tip_kind(self):
        if self.tip_percentage is not None and self.tip_amount is not None:
            raise ValueError("Give either tip_percentage or tip_amount, not both")
        return self


class SettlementPreviewResponse(BaseModel):
    order_id: int
    amount: Money
    tip_base: Money
    tip_amount: Money
    total_to_pay: Money
    received_amount: Optional[Money] = None
    change_amount: Money


class PaymentResponse(BaseModel):
    id: int
    order_id: int
    payment_method_id: int
    amount: Money
    tip_amount: Money
    tip_percentage: Optional[Money] = None
    total_paid: Money
    received_amount: Optional[Money] = None
    change_amount: Money
    status: PaymentStatus
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    payment: PaymentResponse
    order: OrderResponse
    print_warning: Optional[str] = None
