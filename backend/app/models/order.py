"""Dining order models - orders, order items and their side selections."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Enum as SQLEnum, ForeignKey, Integer, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin, VersionMixin
from app.models.validators import non_negative, positive


class OrderStatus(str, Enum):
    """Status of a dining order."""

    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    PAID = "paid"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERED,
)
TERMINAL_STATUSES = (OrderStatus.PAID, OrderStatus.CANCELLED)


def _money_column():
    return mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)


class Order(Base, TimestampMixin, VersionMixin):
    """One dining session's tab."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    table_id: Mapped[int] = mapped_column(ForeignKey("tables.id"), nullable=False, index=True)
    owner_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    diners_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            values_callable=lambda statuses: [s.value for s in statuses],
            native_enum=False,
            length=20,
        ),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )

    subtotal: Mapped[Decimal] = _money_column()
    tax_amount: Mapped[Decimal] = _money_column()
    total_amount: Mapped[Decimal] = _money_column()
    tip_amount: Mapped[Decimal] = _money_column()
    grand_total: Mapped[Decimal] = _money_column()
    paid_amount: Mapped[Decimal] = _money_column()
    change_amount: Mapped[Decimal] = _money_column()

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    table: Mapped["Table"] = relationship("Table", back_populates="orders")
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payments: Mapped[list["Payment"]] = relationship(
        "Payment", back_populates="order", order_by="Payment.created_at"
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def payment_status(self) -> str:
        if self.total_amount and self.paid_amount >= self.total_amount:
            return "paid"
        return "pending"

    @validates(
        "subtotal", "tax_amount", "total_amount", "tip_amount",
        "grand_total", "paid_amount", "change_amount",
    )
    def _validate_amounts(self, key, value):
        return non_negative(key, value)

    @validates("diners_count")
    def _validate_diners_count(self, key, value):
        return positive(key, value)


class OrderItem(Base, TimestampMixin):
    """A menu item line within an order.

    ``unit_price`` is the tax-exclusive base price captured when the line
    was added; ``subtotal`` is always ``unit_price * quantity``.
    """

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cooking_point_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("cooking_points.id"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="items")
    menu_item: Mapped["MenuItem"] = relationship("MenuItem")
    cooking_point: Mapped[Optional["CookingPoint"]] = relationship("CookingPoint")
    sides: Mapped[list["OrderItemSide"]] = relationship(
        "OrderItemSide",
        back_populates="order_item",
        order_by="OrderItemSide.id",
    )

    def set_quantity(self, quantity: int) -> None:
        """Change quantity and keep the derived subtotal in step."""
        self.quantity = quantity
        self.subtotal = self.unit_price * quantity

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price", "subtotal")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


class OrderItemSide(Base):
    """A side dish chosen for an order item.

    The foreign key to ``order_items`` has no ON DELETE action: side rows
    must be removed before their item.
    """

    __tablename__ = "order_item_sides"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_item_id: Mapped[int] = mapped_column(
        ForeignKey("order_items.id"), nullable=False, index=True
    )
    side_id: Mapped[int] = mapped_column(ForeignKey("sides.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Relationships
    order_item: Mapped["OrderItem"] = relationship("OrderItem", back_populates="sides")
    side: Mapped["Side"] = relationship("Side")


# Forward references
from app.models.restaurant import Table, MenuItem, Side, CookingPoint  # noqa: E402
from app.models.payment import Payment  # noqa: E402
