"""Payment models - payment methods and settlement records."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin
from app.models.validators import non_negative, percentage

CASH_METHOD_CODE = "CASH"


class PaymentStatus(str, Enum):
    """Status of a payment record."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentMethod(Base, TimestampMixin):
    """Tender type accepted at the register (cash, card, transfer...)."""

    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def is_cash(self) -> bool:
        return (self.code or "").upper() == CASH_METHOD_CODE


class Payment(Base, TimestampMixin):
    """Settlement record. Written once, never updated."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    payment_method_id: Mapped[int] = mapped_column(ForeignKey("payment_methods.id"), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tip_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    tip_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    total_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    received_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    change_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            values_callable=lambda statuses: [s.value for s in statuses],
            native_enum=False,
            length=20,
        ),
        default=PaymentStatus.COMPLETED,
        nullable=False,
    )
    reference_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="payments")
    payment_method: Mapped["PaymentMethod"] = relationship("PaymentMethod")

    @validates("amount", "tip_amount", "total_paid", "received_amount", "change_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)

    @validates("tip_percentage")
    def _validate_tip_percentage(self, key, value):
        return percentage(key, value)


# Forward references
from app.models.order import Order  # noqa: E402
