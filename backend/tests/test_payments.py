"""Tests for settlement arithmetic and the payment service."""

import logging
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.order import OrderStatus
from app.models.payment import Payment, PaymentStatus
from app.services.errors import (
    InvalidTransitionError,
    NotFoundError,
    OrderValidationError,
    StaleOrderError,
)
from app.services.order_item_service import OrderItemService
from app.services.payment_service import PaymentService, SettlementRequest, compute_settlement


@pytest.fixture
def single_steak_order(db_session: Session, steak_order):
    """Steak order reduced to one steak: subtotal 20000, total 21600."""
    OrderItemService(db_session).update_quantity(steak_order.items[0].id, 1)
    db_session.refresh(steak_order)
    return steak_order


class TestComputeSettlement:
    def test_percentage_tip_and_change(self):
        result = compute_settlement(
            total_amount=Decimal("21600"),
            tip_base=Decimal("20000"),
            tip_percentage=Decimal("10"),
            received_amount=Decimal("25000"),
        )
        assert result.tip_amount == Decimal("2000")
        assert result.total_to_pay == Decimal("23600")
        assert result.change_amount == Decimal("1400")

    def test_fixed_tip(self):
        result = compute_settlement(total_amount=Decimal("21600"), tip_base=0, tip_amount=Decimal("1500.4"))
        assert result.tip_amount == Decimal("1500")
        assert result.total_to_pay == Decimal("23100")
        assert result.change_amount == Decimal("0")
        assert result.received_amount is None

    def test_tip_rounds_half_up(self):
        result = compute_settlement(
            total_amount=Decimal("1000"), tip_base=Decimal("15"), tip_percentage=Decimal("10")
        )
        # 1.5 rounds up to 2
        assert result.tip_amount == Decimal("2")

    def test_short_cash_rejected(self):
        with pytest.raises(OrderValidationError):
            compute_settlement(
                total_amount=Decimal("21600"),
                tip_base=Decimal("20000"),
                tip_percentage=Decimal("10"),
                received_amount=Decimal("20000"),
            )

    def test_exact_cash_gives_zero_change(self):
        result = compute_settlement(
            total_amount=Decimal("21600"), tip_base=0, received_amount=Decimal("21600")
        )
        assert result.change_amount == Decimal("0")


class TestSettle:
    def test_settlement_scenario(self, db_session: Session, single_steak_order, tables, payment_methods):
        payment = PaymentService(db_session).settle(
            SettlementRequest(
                order_id=single_steak_order.id,
                payment_method_id=payment_methods["cash"].id,
                tip_percentage=Decimal("10"),
                received_amount=Decimal("25000"),
            )
        )

        assert payment.amount == Decimal("21600")
        assert payment.tip_amount == Decimal("2000")
        assert payment.total_paid == Decimal("23600")
        assert payment.change_amount == Decimal("1400")
        assert payment.status == PaymentStatus.COMPLETED

        db_session.refresh(single_steak_order)
        assert single_steak_order.status == OrderStatus.PAID
        assert single_steak_order.tip_amount == Decimal("2000")
        assert single_steak_order.grand_total == Decimal("23600")
        assert single_steak_order.grand_total == single_steak_order.total_amount + single_steak_order.tip_amount
        assert single_steak_order.paid_amount == Decimal("23600")
        assert single_steak_order.change_amount == Decimal("1400")
        assert single_steak_order.payment_status == "paid"

        db_session.refresh(tables[1])
        assert tables[1].status is True

    def test_short_cash_rejected_without_writes(
        self, db_session: Session, single_steak_order, tables, payment_methods
    ):
        with pytest.raises(OrderValidationError):
            PaymentService(db_session).settle(
                SettlementRequest(
                    order_id=single_steak_order.id,
                    payment_method_id=payment_methods["cash"].id,
                    tip_percentage=Decimal("10"),
                    received_amount=Decimal("20000"),
                )
            )

        assert db_session.query(Payment).count() == 0
        db_session.refresh(single_steak_order)
        assert single_steak_order.status == OrderStatus.READY
        db_session.refresh(tables[1])
        assert tables[1].status is False

    def test_card_payment_without_received_amount(self, db_session: Session, steak_order, payment_methods):
        payment = PaymentService(db_session).settle(
            SettlementRequest(order_id=steak_order.id, payment_method_id=payment_methods["card"].id)
        )
        assert payment.total_paid == Decimal("43200")
        assert payment.received_amount is None
        assert payment.change_amount == Decimal("0")

    def test_cash_requires_received_amount(self, db_session: Session, steak_order, payment_methods):
        with pytest.raises(OrderValidationError):
            PaymentService(db_session).settle(
                SettlementRequest(order_id=steak_order.id, payment_method_id=payment_methods["cash"].id)
            )

    def test_tip_kinds_are_exclusive(self, db_session: Session, steak_order, payment_methods):
        with pytest.raises(OrderValidationError):
            PaymentService(db_session).settle(
                SettlementRequest(
                    order_id=steak_order.id,
                    payment_method_id=payment_methods["card"].id,
                    tip_percentage=Decimal("10"),
                    tip_amount=Decimal("1000"),
                )
            )

    def test_tip_percentage_out_of_range(self, db_session: Session, steak_order, payment_methods):
        with pytest.raises(OrderValidationError):
            PaymentService(db_session).settle(
                SettlementRequest(
                    order_id=steak_order.id,
                    payment_method_id=payment_methods["card"].id,
                    tip_percentage=Decimal("120"),
                )
            )

    def test_inactive_method_rejected(self, db_session: Session, steak_order, payment_methods):
        with pytest.raises(OrderValidationError):
            PaymentService(db_session).settle(
                SettlementRequest(order_id=steak_order.id, payment_method_id=payment_methods["transfer"].id)
            )

    def test_unknown_method(self, db_session: Session, steak_order, payment_methods):
        with pytest.raises(NotFoundError):
            PaymentService(db_session).settle(
                SettlementRequest(order_id=steak_order.id, payment_method_id=9999)
            )

    def test_already_paid_rejected(self, db_session: Session, steak_order, payment_methods):
        service = PaymentService(db_session)
        request = SettlementRequest(order_id=steak_order.id, payment_method_id=payment_methods["card"].id)
        service.settle(request)

        with pytest.raises(InvalidTransitionError):
            service.settle(request)
        assert db_session.query(Payment).count() == 1

    def test_stale_version_rejected(self, db_session: Session, steak_order, payment_methods):
        with pytest.raises(StaleOrderError):
            PaymentService(db_session).settle(
                SettlementRequest(
                    order_id=steak_order.id,
                    payment_method_id=payment_methods["card"].id,
                    expected_version=0,
                )
            )


class TestPreviewAndHistory:
    def test_preview_writes_nothing(self, db_session: Session, single_steak_order, payment_methods):
        breakdown = PaymentService(db_session).preview(
            SettlementRequest(
                order_id=single_steak_order.id,
                payment_method_id=payment_methods["cash"].id,
                tip_percentage=Decimal("10"),
                received_amount=Decimal("25000"),
            )
        )
        assert breakdown.tip_base == Decimal("20000")
        assert breakdown.total_to_pay == Decimal("23600")
        assert breakdown.change_amount == Decimal("1400")

        assert db_session.query(Payment).count() == 0
        db_session.refresh(single_steak_order)
        assert single_steak_order.status == OrderStatus.READY

    def test_list_payment_methods_skips_inactive(self, db_session: Session, payment_methods):
        methods = PaymentService(db_session).list_payment_methods()
        assert [m.code for m in methods] == ["CASH", "CARD"]

    def test_order_payments(self, db_session: Session, steak_order, payment_methods):
        service = PaymentService(db_session)
        service.settle(SettlementRequest(order_id=steak_order.id, payment_method_id=payment_methods["card"].id))

        payments = service.get_order_payments(steak_order.id)
        assert len(payments) == 1
        assert payments[0].payment_method.code == "CARD"

    def test_order_payments_unknown_order(self, db_session: Session):
        with pytest.raises(NotFoundError):
            PaymentService(db_session).get_order_payments(9999)


class TestTipBase:
    def test_default_tip_base_uses_captured_prices(
        self, db_session: Session, single_steak_order, menu_items, payment_methods, caplog
    ):
        menu_items["steak"].base_price = Decimal("25000")
        db_session.commit()

        with caplog.at_level(logging.WARNING, logger="app.services.payment_service"):
            breakdown = PaymentService(db_session).preview(
                SettlementRequest(
                    order_id=single_steak_order.id,
                    payment_method_id=payment_methods["card"].id,
                    tip_percentage=Decimal("10"),
                )
            )

        assert breakdown.tip_base == Decimal("20000")
        assert breakdown.tip_amount == Decimal("2000")
        assert "differs from stored subtotal" not in caplog.text

    def test_menu_base_price_follows_catalog_changes(
        self, db_session: Session, single_steak_order, menu_items, payment_methods, monkeypatch, caplog
    ):
        monkeypatch.setattr(settings, "tip_base", "menu_base_price")
        menu_items["steak"].base_price = Decimal("25000")
        db_session.commit()

        with caplog.at_level(logging.WARNING, logger="app.services.payment_service"):
            breakdown = PaymentService(db_session).preview(
                SettlementRequest(
                    order_id=single_steak_order.id,
                    payment_method_id=payment_methods["card"].id,
                    tip_percentage=Decimal("10"),
                )
            )

        assert breakdown.tip_base == Decimal("25000")
        assert breakdown.tip_amount == Decimal("2500")
        assert breakdown.total_to_pay == Decimal("24100")
        assert f"Order {single_steak_order.id} tip base 25000 differs from stored subtotal" in caplog.text

    def test_menu_base_price_without_drift_logs_nothing(
        self, db_session: Session, single_steak_order, payment_methods, monkeypatch, caplog
    ):
        monkeypatch.setattr(settings, "tip_base", "menu_base_price")

        with caplog.at_level(logging.WARNING, logger="app.services.payment_service"):
            breakdown = PaymentService(db_session).preview(
                SettlementRequest(
                    order_id=single_steak_order.id,
                    payment_method_id=payment_methods["card"].id,
                    tip_percentage=Decimal("10"),
                )
            )

        assert breakdown.tip_base == Decimal("20000")
        assert "differs from stored subtotal" not in caplog.text
