"""Restaurant floor and catalog models - tables, menu items, sides, cooking points.

The catalog is administered elsewhere; the order engine only reads it.
``Table.status`` is the one column here the engine writes.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin
from app.models.validators import non_negative, percentage, positive


class Table(Base, TimestampMixin):
    """Physical restaurant table.

    ``status`` is True when the table is available and False when an
    active order is seated at it.
    """

    __tablename__ = "tables"

    id: Mapped[int] = mapped_column(primary_key=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    capacity: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    orders: Mapped[list["Order"]] = relationship("Order", back_populates="table")

    @property
    def is_available(self) -> bool:
        return bool(self.status)

    @validates("capacity")
    def _validate_capacity(self, key, value):
        return positive(key, value)


class MenuItem(Base, TimestampMixin):
    """Menu item.

    ``price`` is the tax-inclusive price shown to guests. ``base_price`` is
    the tax-exclusive unit price used for accounting; when it is missing
    the display price stands in for it.
    """

    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    base_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    tax_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    fee_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def unit_base_price(self) -> Decimal:
        """Tax-exclusive unit price, falling back to the display price."""
        return self.base_price if self.base_price is not None else self.price

    @validates("price", "base_price")
    def _validate_price(self, key, value):
        return non_negative(key, value)

    @validates("tax_rate", "fee_percent")
    def _validate_percent(self, key, value):
        return percentage(key, value)


class Side(Base, TimestampMixin):
    """Side dish a guest can pick for an order item."""

    __tablename__ = "sides"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class CookingPoint(Base, TimestampMixin):
    """Doneness option (rare, medium, well done...)."""

    __tablename__ = "cooking_points"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# Forward references
from app.models.order import Order  # noqa: E402
