"""Tests for order totals recalculation."""

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from app.models.order import OrderStatus
from app.services.errors import InvalidTransitionError
from app.services.order_item_service import OrderItemService
from app.services.order_lifecycle_service import NewOrderLine, OrderLifecycleService
from app.services.order_totals_service import (
    OrderTotalsService,
    PricedLine,
    compute_totals,
    effective_tax_rate,
)


class TestComputeTotals:
    """Pure aggregate arithmetic."""

    def test_empty_order_is_zero(self):
        totals = compute_totals([])
        assert totals.subtotal == 0
        assert totals.tax_amount == 0
        assert totals.total_amount == 0

    def test_rounds_once_per_aggregate(self):
        # Three lines of 0.4 tax each: per-line rounding would give 0, aggregate gives 1
        lines = [PricedLine(unit_price=Decimal("5"), quantity=1, tax_rate=Decimal("8"))] * 3
        totals = compute_totals(lines)
        assert totals.subtotal == Decimal("15")
        assert totals.tax_amount == Decimal("1")
        assert totals.total_amount == Decimal("16")

    def test_total_is_subtotal_plus_tax(self):
        lines = [
            PricedLine(unit_price=Decimal("20000"), quantity=2, tax_rate=Decimal("8")),
            PricedLine(unit_price=Decimal("4500"), quantity=3, tax_rate=Decimal("0")),
            PricedLine(unit_price=Decimal("3333"), quantity=1, tax_rate=Decimal("19")),
        ]
        totals = compute_totals(lines)
        assert totals.total_amount == totals.subtotal + totals.tax_amount

    def test_default_tax_rate_for_missing_rate(self, menu_items):
        assert effective_tax_rate(menu_items["soda"]) == Decimal("8")
        assert effective_tax_rate(menu_items["lemonade"]) == Decimal("0")
        assert effective_tax_rate(None) == Decimal("8")


class TestRecalculation:
    """Totals written back to orders."""

    def test_add_item_scenario(self, db_session: Session, steak_order):
        """Base price 20000, tax 8%, quantity 2."""
        db_session.refresh(steak_order)
        assert steak_order.subtotal == Decimal("40000")
        assert steak_order.tax_amount == Decimal("3200")
        assert steak_order.total_amount == Decimal("43200")
        assert steak_order.grand_total == Decimal("43200")

    def test_decrease_quantity_scenario(self, db_session: Session, steak_order):
        item = steak_order.items[0]
        OrderItemService(db_session).update_quantity(item.id, 1)

        db_session.refresh(steak_order)
        assert steak_order.subtotal == Decimal("20000")
        assert steak_order.tax_amount == Decimal("1600")
        assert steak_order.total_amount == Decimal("21600")

    def test_recalculate_is_idempotent(self, db_session: Session, steak_order):
        service = OrderTotalsService(db_session)
        first = service.recalculate_order(steak_order.id)
        second = service.recalculate_order(steak_order.id)
        assert first == second

        db_session.refresh(steak_order)
        assert steak_order.total_amount == first.total_amount

    def test_recalculate_repairs_drifted_totals(self, db_session: Session, steak_order):
        steak_order.subtotal = Decimal("1")
        steak_order.total_amount = Decimal("1")
        db_session.commit()

        totals = OrderTotalsService(db_session).recalculate_order(steak_order.id)
        assert totals.total_amount == Decimal("43200")

    def test_uses_display_price_without_base_price(self, db_session: Session, tables, menu_items):
        order = OrderLifecycleService(db_session).create_order(
            table_id=tables[2].id,
            lines=[NewOrderLine(menu_item_id=menu_items["soda"].id, quantity=3)],
        )
        assert order.subtotal == Decimal("15000")
        assert order.tax_amount == Decimal("1200")
        assert order.total_amount == Decimal("16200")

    def test_mixed_tax_rates(self, db_session: Session, steak_order, menu_items):
        OrderItemService(db_session).add_item(steak_order.id, menu_items["lemonade"].id, 2)

        db_session.refresh(steak_order)
        assert steak_order.subtotal == Decimal("49000")
        assert steak_order.tax_amount == Decimal("3200")
        assert steak_order.total_amount == Decimal("52200")

    def test_line_price_is_captured_at_add_time(self, db_session: Session, steak_order, menu_items):
        menu_items["steak"].base_price = Decimal("25000")
        db_session.commit()

        totals = OrderTotalsService(db_session).recalculate_order(steak_order.id)
        assert totals.subtotal == Decimal("40000")

        menu_totals = OrderTotalsService(db_session).compute(steak_order.id, price_source="menu")
        assert menu_totals.subtotal == Decimal("50000")

    def test_recalculation_bumps_version(self, db_session: Session, steak_order):
        db_session.refresh(steak_order)
        before = steak_order.version
        OrderTotalsService(db_session).recalculate_order(steak_order.id)
        db_session.refresh(steak_order)
        assert steak_order.version == before + 1

    def test_terminal_order_is_not_recalculated(self, db_session: Session, steak_order):
        OrderLifecycleService(db_session).cancel_order(steak_order.id)
        with pytest.raises(InvalidTransitionError):
            OrderTotalsService(db_session).recalculate_order(steak_order.id)

        db_session.refresh(steak_order)
        assert steak_order.status == OrderStatus.CANCELLED
