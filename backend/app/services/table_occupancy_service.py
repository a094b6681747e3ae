"""Table Occupancy Service - keeps ``Table.status`` in step with active orders.

A table is occupied (``status=False``) exactly when a non-terminal order
references it. ``occupy`` and ``free`` are called inside the same
transaction as the order change they accompany; ``sync_table`` and
``reconcile_all`` rebuild the flag from the orders themselves.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.db.session import transaction
from app.models.restaurant import Table
from app.services.order_queries import active_orders_for_table, get_table

logger = logging.getLogger(__name__)


class TableOccupancyService:
    """Writes the occupancy flag on tables."""

    def __init__(self, db: Session):
        self.db = db

    def occupy(self, table_id: int) -> Table:
        table = get_table(self.db, table_id)
        if table.status:
            logger.info(f"Table {table.number} occupied")
        table.status = False
        self.db.flush()
        return table

    def free(self, table_id: int, exclude_order_id: Optional[int] = None) -> Table:
        """Mark a table available unless another active order is still seated there."""
        self.db.flush()
        table = get_table(self.db, table_id)
        if self.is_occupied(table_id, exclude_order_id=exclude_order_id):
            logger.warning(
                f"Table {table.number} left occupied: another active order still references it"
            )
            table.status = False
        else:
            if not table.status:
                logger.info(f"Table {table.number} freed")
            table.status = True
        self.db.flush()
        return table

    def is_occupied(self, table_id: int, exclude_order_id: Optional[int] = None) -> bool:
        """Authoritative occupancy: does a non-terminal order reference the table?"""
        self.db.flush()
        return active_orders_for_table(self.db, table_id, exclude_order_id).first() is not None

    def sync_table(self, table_id: int) -> Table:
        """Rewrite one table's flag from its orders and commit."""
        with transaction(self.db, f"Sync table {table_id}"):
            table = get_table(self.db, table_id)
            table.status = not self.is_occupied(table_id)
        self.db.refresh(table)
        return table

    def reconcile_all(self) -> List[Dict]:
        """Rewrite every active table's flag from its orders; report the ones that changed."""
        changes = []
        with transaction(self.db, "Reconcile table occupancy"):
            tables = self.db.query(Table).filter(Table.active.is_(True)).order_by(Table.number).all()
            for table in tables:
                available = not self.is_occupied(table.id)
                if bool(table.status) != available:
                    changes.append({
                        "table_id": table.id,
                        "number": table.number,
                        "was_available": bool(table.status),
                        "available": available,
                    })
                    table.status = available

        if changes:
            logger.warning(f"Occupancy reconciliation corrected {len(changes)} table(s): {changes}")
        else:
            logger.info("Occupancy reconciliation found no drift")
        return changes
