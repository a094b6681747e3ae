"""Order Item Service - add, change and remove order lines.

Each public operation runs as one transaction: the line write, the side
rows and the order totals recalculation either all commit or all roll
back. Side rows are always deleted before their line.
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.money import to_decimal
from app.db.session import transaction
from app.models.order import Order, OrderItem, OrderItemSide
from app.models.restaurant import CookingPoint, Side
from app.services.errors import NotFoundError, OrderValidationError
from app.services.order_queries import get_menu_item, get_open_order, get_order_item
from app.services.order_totals_service import OrderTotalsService

logger = logging.getLogger(__name__)


class OrderItemService:
    """Mutation handlers for order lines."""

    def __init__(self, db: Session):
        self.db = db
        self.totals = OrderTotalsService(db)

    # ===== PUBLIC OPERATIONS =====

    def add_item(
        self,
        order_id: int,
        menu_item_id: int,
        quantity: int,
        cooking_point_id: Optional[int] = None,
        notes: Optional[str] = None,
        side_ids: Optional[Sequence[int]] = None,
        expected_version: Optional[int] = None,
    ) -> OrderItem:
        """Add a line to an open order and recalculate its totals."""
        with transaction(self.db, f"Add menu item {menu_item_id} to order {order_id}"):
            order = get_open_order(self.db, order_id, "add item", expected_version)
            item = self.add_line(order, menu_item_id, quantity, cooking_point_id, notes, side_ids)
            self.totals.recalculate(order)

        self.db.refresh(item)
        logger.info(f"Added {quantity} x menu item {menu_item_id} to order {order_id} (line {item.id})")
        return item

    def update_quantity(
        self,
        item_id: int,
        quantity: int,
        expected_version: Optional[int] = None,
    ) -> Optional[OrderItem]:
        """Set a line's quantity. Zero or less deletes the line and its sides.

        Returns the updated line, or None when it was deleted.
        """
        item = get_order_item(self.db, item_id)
        order_id = item.order_id
        with transaction(self.db, f"Update quantity of line {item_id}"):
            order = get_open_order(self.db, order_id, "update item", expected_version)
            if quantity <= 0:
                self.delete_line(item)
                item = None
            else:
                item.set_quantity(quantity)
            self.totals.recalculate(order)

        if item is None:
            logger.info(f"Removed line {item_id} from order {order_id} (quantity set to {quantity})")
            return None
        self.db.refresh(item)
        logger.info(f"Line {item_id} on order {order_id} now has quantity {quantity}")
        return item

    def remove_quantity(
        self,
        item_id: int,
        amount: int,
        expected_version: Optional[int] = None,
    ) -> Optional[OrderItem]:
        """Take ``amount`` units off a line, deleting it when nothing remains."""
        if amount <= 0:
            raise OrderValidationError("Amount to remove must be positive", field="amount")

        item = get_order_item(self.db, item_id)
        order_id = item.order_id
        with transaction(self.db, f"Remove {amount} from line {item_id}"):
            order = get_open_order(self.db, order_id, "remove item", expected_version)
            remaining = item.quantity - amount
            if remaining <= 0:
                self.delete_line(item)
                item = None
            else:
                item.set_quantity(remaining)
            self.totals.recalculate(order)

        if item is None:
            logger.info(f"Removed line {item_id} from order {order_id}")
            return None
        self.db.refresh(item)
        logger.info(f"Line {item_id} on order {order_id} decreased by {amount} to {remaining}")
        return item

    def delete_item(self, item_id: int, expected_version: Optional[int] = None) -> None:
        """Remove a whole line regardless of its quantity."""
        self.update_quantity(item_id, 0, expected_version=expected_version)

    def replace_sides(
        self,
        item_id: int,
        side_ids: Sequence[int],
        expected_version: Optional[int] = None,
    ) -> OrderItem:
        """Swap a line's side selection wholesale: delete every side row, then re-create."""
        item = get_order_item(self.db, item_id)
        with transaction(self.db, f"Replace sides of line {item_id}"):
            order = get_open_order(self.db, item.order_id, "change sides", expected_version)
            self._delete_sides(item)
            self._add_sides(item, side_ids)
            order.increment_version()

        self.db.refresh(item)
        logger.info(f"Line {item_id} sides replaced with {list(side_ids)}")
        return item

    # ===== BUILDING BLOCKS (no commit) =====

    def add_line(
        self,
        order: Order,
        menu_item_id: int,
        quantity: int,
        cooking_point_id: Optional[int] = None,
        notes: Optional[str] = None,
        side_ids: Optional[Sequence[int]] = None,
    ) -> OrderItem:
        """Insert a line and its side rows. Totals are left to the caller."""
        if quantity is None or quantity <= 0:
            raise OrderValidationError("Quantity must be positive", field="quantity")

        menu_item = get_menu_item(self.db, menu_item_id)
        if not menu_item.available:
            raise OrderValidationError(f"Menu item '{menu_item.name}' is not available", field="menu_item_id")

        if cooking_point_id is not None:
            exists = self.db.query(CookingPoint.id).filter(CookingPoint.id == cooking_point_id).first()
            if exists is None:
                raise NotFoundError("Cooking point", cooking_point_id)

        unit_price = to_decimal(menu_item.unit_base_price)
        item = OrderItem(
            order_id=order.id,
            menu_item_id=menu_item.id,
            quantity=quantity,
            unit_price=unit_price,
            subtotal=unit_price * quantity,
            cooking_point_id=cooking_point_id,
            notes=notes,
        )
        self.db.add(item)
        self.db.flush()

        self._add_sides(item, side_ids or [])
        return item

    def delete_line(self, item: OrderItem) -> None:
        """Delete a line. Side rows go first so the foreign key never dangles."""
        self._delete_sides(item)
        self.db.delete(item)
        self.db.flush()

    def _delete_sides(self, item: OrderItem) -> int:
        # Query.delete() bypasses after_flush; side rows go one at a time
        rows = self.db.query(OrderItemSide).filter(OrderItemSide.order_item_id == item.id).all()
        for row in rows:
            self.db.delete(row)
        self.db.flush()
        self.db.expire(item, ["sides"])
        return len(rows)

    def _add_sides(self, item: OrderItem, side_ids: Sequence[int]) -> List[OrderItemSide]:
        side_ids = list(side_ids)
        if not side_ids:
            return []

        found = {s.id for s in self.db.query(Side).filter(Side.id.in_(side_ids)).all()}
        missing = [sid for sid in side_ids if sid not in found]
        if missing:
            raise NotFoundError("Side", missing[0])

        rows = [OrderItemSide(order_item_id=item.id, side_id=sid, quantity=1) for sid in side_ids]
        self.db.add_all(rows)
        self.db.flush()
        self.db.expire(item, ["sides"])
        return rows
