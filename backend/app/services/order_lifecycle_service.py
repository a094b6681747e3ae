"""Order Lifecycle Service - order creation, status transitions, cancellation, table transfer.

Status machine:

    pending -> preparing -> ready -> delivered      (forward only, steps may be skipped)
    any non-terminal -> paid                        (settlement only, see PaymentService)
    any non-terminal -> cancelled                   (cancel_order)

Nothing leaves ``paid`` or ``cancelled``. Every operation that touches a
table's occupancy flag commits together with the order change.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import transaction
from app.models.order import ACTIVE_STATUSES, Order, OrderStatus
from app.services.errors import InvalidTransitionError, OrderValidationError, TableOccupiedError
from app.services.order_item_service import OrderItemService
from app.services.order_queries import find_active_order, get_open_order, get_table, lock_tables
from app.services.order_totals_service import OrderTotalsService
from app.services.table_occupancy_service import TableOccupancyService

logger = logging.getLogger(__name__)

FORWARD_SEQUENCE = list(ACTIVE_STATUSES)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Whether the kitchen/service workflow may move an order from current to target.

    Terminal targets are reached through dedicated operations, not this check.
    """
    if current.is_terminal or target.is_terminal:
        return False
    return FORWARD_SEQUENCE.index(target) > FORWARD_SEQUENCE.index(current)


@dataclass
class NewOrderLine:
    """A line to add while creating an order."""

    menu_item_id: int
    quantity: int
    cooking_point_id: Optional[int] = None
    notes: Optional[str] = None
    side_ids: List[int] = field(default_factory=list)


class OrderLifecycleService:
    """Creates orders and moves them through their statuses."""

    def __init__(self, db: Session):
        self.db = db
        self.items = OrderItemService(db)
        self.totals = OrderTotalsService(db)
        self.occupancy = TableOccupancyService(db)

    def create_order(
        self,
        table_id: int,
        owner_id: Optional[int] = None,
        diners_count: int = 1,
        notes: Optional[str] = None,
        lines: Optional[Sequence[NewOrderLine]] = None,
        initial_status: Optional[OrderStatus] = None,
    ) -> Order:
        """Open an order on a free table, add its lines and mark the table occupied."""
        status = OrderStatus(initial_status or settings.order_initial_status)
        if status.is_terminal:
            raise OrderValidationError(f"Orders cannot start as '{status.value}'", field="status")
        if diners_count is None or diners_count <= 0:
            raise OrderValidationError("Diner count must be positive", field="diners_count")

        with transaction(self.db, f"Create order on table {table_id}"):
            table = get_table(self.db, table_id, lock=True)
            if not table.active:
                raise OrderValidationError(f"Table {table.number} is inactive", field="table_id")

            current = find_active_order(self.db, table.id)
            if current is not None:
                raise TableOccupiedError(table.id, current.id)

            order = Order(
                table_id=table.id,
                owner_id=owner_id,
                diners_count=diners_count,
                status=status,
                subtotal=Decimal("0"),
                tax_amount=Decimal("0"),
                total_amount=Decimal("0"),
                tip_amount=Decimal("0"),
                grand_total=Decimal("0"),
                paid_amount=Decimal("0"),
                change_amount=Decimal("0"),
                notes=notes,
            )
            self.db.add(order)
            self.db.flush()

            for line in lines or []:
                self.items.add_line(
                    order,
                    line.menu_item_id,
                    line.quantity,
                    cooking_point_id=line.cooking_point_id,
                    notes=line.notes,
                    side_ids=line.side_ids,
                )
            self.totals.recalculate(order)
            self.occupancy.occupy(table.id)

        self.db.refresh(order)
        logger.info(
            f"Order {order.id} created on table {table.number} as '{order.status.value}' "
            f"with {len(order.items)} line(s), total={order.total_amount}"
        )
        return order

    def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        expected_version: Optional[int] = None,
    ) -> Order:
        """Advance an order through the kitchen workflow, or cancel it."""
        status = OrderStatus(status)
        if status == OrderStatus.CANCELLED:
            return self.cancel_order(order_id, expected_version=expected_version)

        with transaction(self.db, f"Move order {order_id} to {status.value}"):
            order = get_open_order(self.db, order_id, status.value, expected_version)
            if not can_transition(order.status, status):
                raise InvalidTransitionError(order.id, order.status.value, status.value)
            previous = order.status
            order.status = status
            order.increment_version()

        self.db.refresh(order)
        logger.info(f"Order {order_id} moved from '{previous.value}' to '{status.value}'")
        return order

    def cancel_order(
        self,
        order_id: int,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        """Cancel an open order and release its table."""
        with transaction(self.db, f"Cancel order {order_id}"):
            order = get_open_order(self.db, order_id, OrderStatus.CANCELLED.value, expected_version)
            order.status = OrderStatus.CANCELLED
            if reason:
                order.notes = f"{order.notes}\n{reason}" if order.notes else reason
            order.increment_version()
            self.occupancy.free(order.table_id)

        self.db.refresh(order)
        logger.info(f"Order {order_id} cancelled")
        return order

    def transfer_table(
        self,
        order_id: int,
        new_table_id: int,
        confirm_occupied: bool = False,
        expected_version: Optional[int] = None,
    ) -> Order:
        """Move an open order to another table.

        The source table is freed and the destination occupied in the same
        transaction as the order's table change. A destination already
        holding another active order needs ``confirm_occupied``. Both tables
        are row-locked in ascending id order before the occupancy check.
        """
        with transaction(self.db, f"Transfer order {order_id} to table {new_table_id}"):
            order = get_open_order(self.db, order_id, "transfer", expected_version)
            source_table_id = order.table_id
            if new_table_id == source_table_id:
                raise OrderValidationError("Order is already on that table", field="new_table_id")

            destination = lock_tables(self.db, [source_table_id, new_table_id])[new_table_id]
            if not destination.active:
                raise OrderValidationError(f"Table {destination.number} is inactive", field="new_table_id")

            occupant = find_active_order(self.db, destination.id, exclude_order_id=order.id)
            if occupant is not None and not confirm_occupied:
                raise TableOccupiedError(destination.id, occupant.id)

            order.table_id = destination.id
            order.increment_version()
            self.db.flush()

            self.occupancy.free(source_table_id)
            self.occupancy.occupy(destination.id)

        self.db.refresh(order)
        logger.info(
            f"Order {order_id} transferred from table id {source_table_id} to table {destination.number}"
            + (f" (shared with order {occupant.id})" if occupant is not None else "")
        )
        return order

    def update_details(
        self,
        order_id: int,
        diners_count: Optional[int] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        """Change diner count and/or notes on an open order."""
        if diners_count is not None and diners_count <= 0:
            raise OrderValidationError("Diner count must be positive", field="diners_count")

        with transaction(self.db, f"Update order {order_id}"):
            order = get_open_order(self.db, order_id, "update", expected_version)
            if diners_count is not None:
                order.diners_count = diners_count
            if notes is not None:
                order.notes = notes
            order.increment_version()

        self.db.refresh(order)
        return order
