"""SQLAlchemy models."""

from app.models.restaurant import Table, MenuItem, Side, CookingPoint
from app.models.order import (
    Order,
    OrderItem,
    OrderItemSide,
    OrderStatus,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
)
from app.models.payment import Payment, PaymentMethod, PaymentStatus, CASH_METHOD_CODE

__all__ = [
    "Table",
    "MenuItem",
    "Side",
    "CookingPoint",
    "Order",
    "OrderItem",
    "OrderItemSide",
    "OrderStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "CASH_METHOD_CODE",
]
