"""Order Totals Service - recomputes order money fields from its line items.

Recalculation is a pure function of the current line set: reading the
lines twice without an intervening mutation yields identical totals.

    subtotal = round(sum(unit_price * quantity))
    tax      = round(sum(unit_price * quantity * tax_rate / 100))
    total    = subtotal + tax

Rounding happens once per aggregate, never per line.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Literal, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.money import ZERO, percent_of, round_currency, to_decimal
from app.db.session import transaction
from app.models.order import Order, OrderItem
from app.models.restaurant import MenuItem
from app.services.errors import InvalidTransitionError
from app.services.order_queries import get_order

logger = logging.getLogger(__name__)

PriceSource = Literal["order", "menu"]


@dataclass(frozen=True)
class PricedLine:
    """One line reduced to what the totals depend on."""

    unit_price: Decimal
    quantity: int
    tax_rate: Decimal

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def effective_tax_rate(menu_item: Optional[MenuItem]) -> Decimal:
    """Menu item tax rate in percent, or the configured default."""
    if menu_item is None or menu_item.tax_rate is None:
        return to_decimal(settings.default_tax_rate)
    return to_decimal(menu_item.tax_rate)


def compute_totals(lines: Iterable[PricedLine]) -> OrderTotals:
    raw_subtotal = ZERO
    raw_tax = ZERO
    for line in lines:
        raw_subtotal += line.amount
        raw_tax += percent_of(line.amount, line.tax_rate)

    subtotal = round_currency(raw_subtotal)
    tax_amount = round_currency(raw_tax)
    return OrderTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=round_currency(subtotal + tax_amount),
    )


class OrderTotalsService:
    """Reads an order's lines and writes subtotal, tax and total back to the order."""

    def __init__(self, db: Session):
        self.db = db

    def priced_lines(self, order_id: int, price_source: PriceSource = "order") -> List[PricedLine]:
        """Current lines of an order with their tax rates.

        ``price_source="order"`` uses the unit price captured on each line;
        ``"menu"`` re-reads today's base price from the catalog instead.
        """
        rows = (
            self.db.query(OrderItem, MenuItem)
            .outerjoin(MenuItem, MenuItem.id == OrderItem.menu_item_id)
            .filter(OrderItem.order_id == order_id)
            .order_by(OrderItem.id)
            .all()
        )
        lines = []
        for item, menu_item in rows:
            if price_source == "menu" and menu_item is not None:
                unit_price = to_decimal(menu_item.unit_base_price)
            else:
                unit_price = to_decimal(item.unit_price)
            lines.append(PricedLine(
                unit_price=unit_price,
                quantity=item.quantity,
                tax_rate=effective_tax_rate(menu_item),
            ))
        return lines

    def compute(self, order_id: int, price_source: PriceSource = "order") -> OrderTotals:
        """Totals for the order's current lines, without writing anything."""
        self.db.flush()
        return compute_totals(self.priced_lines(order_id, price_source))

    def recalculate(self, order: Order) -> OrderTotals:
        """Write fresh totals onto ``order``. Flushes; the caller owns the commit."""
        totals = self.compute(order.id)

        order.subtotal = totals.subtotal
        order.tax_amount = totals.tax_amount
        order.total_amount = totals.total_amount
        # Tip is zero until settlement, so this is total_amount for open orders
        order.grand_total = round_currency(totals.total_amount + to_decimal(order.tip_amount))
        order.increment_version()
        self.db.flush()

        logger.debug(
            f"Order {order.id} totals: subtotal={totals.subtotal} "
            f"tax={totals.tax_amount} total={totals.total_amount}"
        )
        return totals

    def recalculate_order(self, order_id: int) -> OrderTotals:
        """Recalculate and commit totals for an open order."""
        with transaction(self.db, f"Recalculate order {order_id}"):
            order = get_order(self.db, order_id, lock=True)
            if order.status.is_terminal:
                raise InvalidTransitionError(order.id, order.status.value, "recalculate")
            totals = self.recalculate(order)
        logger.info(f"Recalculated order {order_id}: total={totals.total_amount}")
        return totals
