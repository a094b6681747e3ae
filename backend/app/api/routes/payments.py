"""Payment routes - settlement of dining orders."""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Request, status

from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.rbac import RequireAdmin, RequireStaff
from app.db.session import DbSession
from app.schemas.order import OrderResponse
from app.schemas.payment import (
    PaymentMethodResponse,
    PaymentResponse,
    SettlementCreate,
    SettlementPreviewResponse,
    SettlementResponse,
)
from app.services.change_feed import schedule_publish
from app.services.invoice_service import build_invoice, print_invoice_safely
from app.services.order_queries import get_order
from app.services.payment_service import PaymentService, SettlementRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _settlement_request(body: SettlementCreate) -> SettlementRequest:
    return SettlementRequest(
        order_id=body.order_id,
        payment_method_id=body.payment_method_id,
        tip_percentage=body.tip_percentage,
        tip_amount=body.tip_amount,
        received_amount=body.received_amount,
        notes=body.notes,
        reference_number=body.reference_number,
        expected_version=body.expected_version,
    )


@router.get("/methods", response_model=List[PaymentMethodResponse])
@limiter.limit("60/minute")
def list_payment_methods(request: Request, db: DbSession, current_user: RequireStaff):
    """Active payment methods in display order."""
    return PaymentService(db).list_payment_methods()


@router.post("/preview", response_model=SettlementPreviewResponse)
@limiter.limit("60/minute")
def preview_settlement(request: Request, db: DbSession, body: SettlementCreate, current_user: RequireStaff):
    """Tip, amount due and change for a prospective settlement. Nothing is written."""
    breakdown = PaymentService(db).preview(_settlement_request(body))
    return SettlementPreviewResponse(
        order_id=body.order_id,
        amount=breakdown.amount,
        tip_base=breakdown.tip_base,
        tip_amount=breakdown.tip_amount,
        total_to_pay=breakdown.total_to_pay,
        received_amount=breakdown.received_amount,
        change_amount=breakdown.change_amount,
    )


@router.post("/settle", response_model=SettlementResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def settle_order(
    request: Request,
    db: DbSession,
    body: SettlementCreate,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
):
    """Pay an order: record the payment, close the order, free the table, print the invoice."""
    payment = PaymentService(db).settle(_settlement_request(body))
    schedule_publish(background_tasks, db)
    logger.info(f"Order {body.order_id} settled by user {current_user.id}")

    order = get_order(db, body.order_id)
    print_warning = None
    if settings.print_invoices:
        print_warning = print_invoice_safely(build_invoice(order, payment))

    return SettlementResponse(
        payment=PaymentResponse.model_validate(payment),
        order=OrderResponse.model_validate(order),
        print_warning=print_warning,
    )


@router.get("/orders/{order_id}", response_model=List[PaymentResponse])
@limiter.limit("60/minute")
def get_order_payments(request: Request, db: DbSession, order_id: int, current_user: RequireStaff):
    """Payments recorded against an order."""
    return PaymentService(db).get_order_payments(order_id)
