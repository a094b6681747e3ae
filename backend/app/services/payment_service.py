"""Payment Service - settles an order: tip, change, payment record, order closure, table release.

Settlement algorithm (all amounts rounded to the currency unit):

1. tip base  = tax-exclusive subtotal of the order's lines
2. tip       = round(base * percentage / 100)  or  round(fixed tip)
3. to pay    = round(order.total_amount + tip)
4. change    = round(received - to pay) when cash was received, else 0;
               received below the amount due is rejected
5. insert the Payment, close the order as ``paid``, free the table

The three writes of step 5 commit as one transaction.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.money import ZERO, percent_of, round_currency, to_decimal
from app.db.session import transaction
from app.models.order import Order, OrderStatus
from app.models.payment import Payment, PaymentMethod, PaymentStatus
from app.services.errors import NotFoundError, OrderValidationError
from app.services.order_queries import get_open_order, get_order
from app.services.order_totals_service import OrderTotalsService
from app.services.table_occupancy_service import TableOccupancyService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementRequest:
    order_id: int
    payment_method_id: int
    tip_percentage: Optional[Decimal] = None
    tip_amount: Optional[Decimal] = None
    received_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    reference_number: Optional[str] = None
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class SettlementBreakdown:
    amount: Decimal
    tip_base: Decimal
    tip_amount: Decimal
    total_to_pay: Decimal
    received_amount: Optional[Decimal]
    change_amount: Decimal


def compute_settlement(
    total_amount,
    tip_base,
    tip_percentage=None,
    tip_amount=None,
    received_amount=None,
) -> SettlementBreakdown:
    """Pure settlement arithmetic. Raises OrderValidationError when cash falls short."""
    amount = round_currency(total_amount)
    base = round_currency(tip_base)

    if tip_percentage is not None:
        tip = round_currency(percent_of(base, tip_percentage))
    elif tip_amount is not None:
        tip = round_currency(tip_amount)
    else:
        tip = round_currency(ZERO)

    total_to_pay = round_currency(amount + tip)

    received = None
    change = round_currency(ZERO)
    if received_amount is not None:
        received = round_currency(received_amount)
        change = round_currency(received - total_to_pay)
        if change < 0:
            raise OrderValidationError(
                f"Received amount {received} is less than the amount due {total_to_pay}",
                field="received_amount",
            )

    return SettlementBreakdown(
        amount=amount,
        tip_base=base,
        tip_amount=tip,
        total_to_pay=total_to_pay,
        received_amount=received,
        change_amount=change,
    )


class PaymentService:
    """Payment methods, settlement previews and settlements."""

    def __init__(self, db: Session):
        self.db = db
        self.totals = OrderTotalsService(db)
        self.occupancy = TableOccupancyService(db)

    def list_payment_methods(self) -> List[PaymentMethod]:
        return (
            self.db.query(PaymentMethod)
            .filter(PaymentMethod.active.is_(True))
            .order_by(PaymentMethod.display_order, PaymentMethod.id)
            .all()
        )

    def get_order_payments(self, order_id: int) -> List[Payment]:
        get_order(self.db, order_id)
        return (
            self.db.query(Payment)
            .filter(Payment.order_id == order_id)
            .order_by(Payment.created_at, Payment.id)
            .all()
        )

    def preview(self, request: SettlementRequest) -> SettlementBreakdown:
        """What a settlement would charge, without writing anything."""
        self._validate(request)
        order = get_order(self.db, request.order_id)
        return self._breakdown(order, request)

    def settle(self, request: SettlementRequest) -> Payment:
        """Record the payment, close the order and free its table in one transaction."""
        method = self._validate(request)

        with transaction(self.db, f"Settle order {request.order_id}"):
            order = get_open_order(
                self.db, request.order_id, OrderStatus.PAID.value, request.expected_version
            )
            breakdown = self._breakdown(order, request)

            payment = Payment(
                order_id=order.id,
                payment_method_id=method.id,
                amount=breakdown.amount,
                tip_amount=breakdown.tip_amount,
                tip_percentage=request.tip_percentage,
                total_paid=breakdown.total_to_pay,
                received_amount=breakdown.received_amount,
                change_amount=breakdown.change_amount,
                status=PaymentStatus.COMPLETED,
                reference_number=request.reference_number,
                notes=request.notes,
            )
            self.db.add(payment)

            order.tip_amount = breakdown.tip_amount
            order.grand_total = breakdown.total_to_pay
            order.paid_amount = breakdown.total_to_pay
            order.change_amount = breakdown.change_amount
            order.status = OrderStatus.PAID
            order.increment_version()
            self.db.flush()

            self.occupancy.free(order.table_id)

        self.db.refresh(payment)
        logger.info(
            f"Order {order.id} settled with {method.code}: amount={breakdown.amount} "
            f"tip={breakdown.tip_amount} paid={breakdown.total_to_pay} change={breakdown.change_amount}"
        )
        return payment

    # ===== HELPERS =====

    def _tip_base(self, order: Order) -> Decimal:
        """Tax-exclusive subtotal the tip percentage applies to (see ``settings.tip_base``)."""
        source = "menu" if settings.tip_base == "menu_base_price" else "order"
        return self.totals.compute(order.id, price_source=source).subtotal

    def _breakdown(self, order: Order, request: SettlementRequest) -> SettlementBreakdown:
        tip_base = self._tip_base(order) if request.tip_percentage is not None else ZERO
        if request.tip_percentage is not None and tip_base != to_decimal(order.subtotal):
            logger.warning(
                f"Order {order.id} tip base {tip_base} differs from stored subtotal {order.subtotal}"
            )
        return compute_settlement(
            total_amount=order.total_amount,
            tip_base=tip_base,
            tip_percentage=request.tip_percentage,
            tip_amount=request.tip_amount,
            received_amount=request.received_amount,
        )

    def _validate(self, request: SettlementRequest) -> PaymentMethod:
        if request.tip_percentage is not None and request.tip_amount is not None:
            raise OrderValidationError(
                "Give either a tip percentage or a tip amount, not both", field="tip_amount"
            )
        if request.tip_percentage is not None and not (0 <= to_decimal(request.tip_percentage) <= 100):
            raise OrderValidationError("Tip percentage must be between 0 and 100", field="tip_percentage")
        if request.tip_amount is not None and to_decimal(request.tip_amount) < 0:
            raise OrderValidationError("Tip amount cannot be negative", field="tip_amount")
        if request.received_amount is not None and to_decimal(request.received_amount) < 0:
            raise OrderValidationError("Received amount cannot be negative", field="received_amount")

        method = self.db.query(PaymentMethod).filter(PaymentMethod.id == request.payment_method_id).first()
        if method is None:
            raise NotFoundError("Payment method", request.payment_method_id)
        if not method.active:
            raise OrderValidationError(f"Payment method '{method.name}' is inactive", field="payment_method_id")
        if method.is_cash and (request.received_amount is None or to_decimal(request.received_amount) <= 0):
            raise OrderValidationError("Received amount is required for cash payments", field="received_amount")
        return method
