"""Lookup helpers shared by the order services.

Every helper raises ``NotFoundError`` instead of returning None so callers
never carry a missing row into a multi-step write.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Query, Session

from app.core.config import settings
from app.models.order import ACTIVE_STATUSES, Order, OrderItem, OrderStatus
from app.models.restaurant import MenuItem, Table
from app.services.errors import InvalidTransitionError, NotFoundError


def get_order(db: Session, order_id: int, lock: bool = False) -> Order:
    """Load an order. ``lock`` takes a row lock where the backend supports it."""
    query = db.query(Order).filter(Order.id == order_id)
    if lock:
        query = query.with_for_update()
    order = query.first()
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


def get_open_order(
    db: Session,
    order_id: int,
    action: str,
    expected_version: Optional[int] = None,
) -> Order:
    """Load an order that is still editable, locked for the rest of the transaction."""
    order = get_order(db, order_id, lock=True)
    if order.status.is_terminal:
        raise InvalidTransitionError(order.id, order.status.value, action)
    order.check_version(expected_version)
    return order


def get_order_item(db: Session, item_id: int) -> OrderItem:
    item = db.query(OrderItem).filter(OrderItem.id == item_id).first()
    if item is None:
        raise NotFoundError("Order item", item_id)
    return item


def get_table(db: Session, table_id: int, lock: bool = False) -> Table:
    """Load a table. ``lock`` serializes occupancy checks on it until commit."""
    query = db.query(Table).filter(Table.id == table_id)
    if lock:
        query = query.with_for_update()
    table = query.first()
    if table is None:
        raise NotFoundError("Table", table_id)
    return table


def lock_tables(db: Session, table_ids: Sequence[int]) -> Dict[int, Table]:
    """Row-lock several tables in ascending id order, keyed by id."""
    return {table_id: get_table(db, table_id, lock=True) for table_id in sorted(set(table_ids))}


def get_menu_item(db: Session, menu_item_id: int) -> MenuItem:
    menu_item = db.query(MenuItem).filter(MenuItem.id == menu_item_id).first()
    if menu_item is None:
        raise NotFoundError("Menu item", menu_item_id)
    return menu_item


def active_orders_for_table(
    db: Session,
    table_id: int,
    exclude_order_id: Optional[int] = None,
) -> Query:
    query = db.query(Order).filter(
        Order.table_id == table_id,
        Order.status.in_(ACTIVE_STATUSES),
    )
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)
    return query


def find_active_order(
    db: Session,
    table_id: int,
    exclude_order_id: Optional[int] = None,
) -> Optional[Order]:
    """Most recent non-terminal order seated at a table, if any."""
    return (
        active_orders_for_table(db, table_id, exclude_order_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .first()
    )


def business_day_bounds(day: Optional[date] = None) -> tuple[datetime, datetime]:
    """UTC start/end of a business day in the configured timezone."""
    tz = ZoneInfo(settings.timezone)
    day = day or datetime.now(tz).date()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def filtered_orders(
    db: Session,
    status: Optional[OrderStatus] = None,
    payment_status: Optional[str] = None,
    table_id: Optional[int] = None,
    today_only: bool = False,
) -> Query:
    """Order listing query, newest first."""
    query = db.query(Order)
    if status is not None:
        query = query.filter(Order.status == status)
    if table_id is not None:
        query = query.filter(Order.table_id == table_id)
    if payment_status == "paid":
        query = query.filter(Order.total_amount > 0, Order.paid_amount >= Order.total_amount)
    elif payment_status == "pending":
        query = query.filter((Order.total_amount <= 0) | (Order.paid_amount < Order.total_amount))
    if today_only:
        start, end = business_day_bounds()
        query = query.filter(Order.created_at >= start, Order.created_at < end)
    return query.order_by(Order.created_at.desc(), Order.id.desc())
