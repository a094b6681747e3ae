"""Dining order routes - order lifecycle and order line edits."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Query, Request, Response, status

from app.core.rate_limit import limiter
from app.core.rbac import RequireAdmin, RequireStaff
from app.db.session import DbSession
from app.models.order import OrderStatus
from app.schemas.order import (
    CancelRequest,
    OrderCreate,
    OrderItemAdd,
    OrderItemResponse,
    OrderResponse,
    OrderTotalsResponse,
    OrderUpdate,
    QuantityRemove,
    QuantityUpdate,
    SidesReplace,
    StatusUpdate,
    TransferRequest,
)
from app.schemas.pagination import OrderPage
from app.services.change_feed import schedule_publish
from app.services.order_item_service import OrderItemService
from app.services.order_lifecycle_service import NewOrderLine, OrderLifecycleService
from app.services.order_queries import filtered_orders, get_order
from app.services.order_totals_service import OrderTotalsService

logger = logging.getLogger(__name__)

router = APIRouter()


def _order_response(db: DbSession, order_id: int) -> OrderResponse:
    return OrderResponse.model_validate(get_order(db, order_id))


# ============== ORDERS ==============

@router.get("/", response_model=OrderPage)
@limiter.limit("60/minute")
def list_orders(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[str] = Query(None, pattern="^(paid|pending)$"),
    table_id: Optional[int] = None,
    today: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List orders, newest first."""
    query = filtered_orders(
        db,
        status=status_filter,
        payment_status=payment_status,
        table_id=table_id,
        today_only=today,
    )
    return OrderPage.from_query(query, skip, limit)


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_order(
    request: Request,
    db: DbSession,
    body: OrderCreate,
    current_user: RequireStaff,
    background_tasks: BackgroundTasks,
):
    """Open an order on a table with its first lines. The table becomes occupied."""
    order = OrderLifecycleService(db).create_order(
        table_id=body.table_id,
        owner_id=current_user.id,
        diners_count=body.diners_count,
        notes=body.notes,
        lines=[
            NewOrderLine(
                menu_item_id=line.menu_item_id,
                quantity=line.quantity,
                cooking_point_id=line.cooking_point_id,
                notes=line.notes,
                side_ids=list(line.side_ids),
            )
            for line in body.items
        ],
    )
    schedule_publish(background_tasks, db)
    return _order_response(db, order.id)


@router.get("/{order_id}", response_model=OrderResponse)
@limiter.limit("60/minute")
def get_order_detail(request: Request, db: DbSession, order_id: int, current_user: RequireStaff):
    """Order with its lines and side selections."""
    return _order_response(db, order_id)


@router.patch("/{order_id}", response_model=OrderResponse)
@limiter.limit("30/minute")
def update_order(
    request: Request,
    db: DbSession,
    order_id: int,
    body: OrderUpdate,
    current_user: RequireStaff,
    background_tasks: BackgroundTasks,
):
    """Change diner count or notes."""
    OrderLifecycleService(db).update_details(
        order_id,
        diners_count=body.diners_count,
        notes=body.notes,
        expected_version=body.expected_version,
    )
    schedule_publish(background_tasks, db)
    return _order_response(db, order_id)


@router.post("/{order_id}/status", response_model=OrderResponse)
@limiter.limit("30/minute")
def update_order_status(
    request: Request,
    db: DbSession,
    order_id: int,
    body: StatusUpdate,
    current_user: RequireStaff,
    background_tasks: BackgroundTasks,
):
    """Advance an order through the kitchen workflow."""
    OrderLifecycleService(db).update_status(order_id, body.status, expected_version=body.expected_version)
    schedule_publish(background_tasks, db)
    return _order_response(db, order_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
@limiter.limit("30/minute")
def cancel_order(
    request: Request,
    db: DbSession,
    order_id: int,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
    body: Optional[CancelRequest] = None,
):
    """Cancel an order and free its table."""
    body = body or CancelRequest()
    OrderLifecycleService(db).cancel_order(order_id, reason=body.reason, expected_version=body.expected_version)
    schedule_publish(background_tasks, db)
    return _order_response(db, order_id)


@router.post("/{order_id}/transfer", response_model=OrderResponse)
@limiter.limit("30/minute")
def transfer_order(
    request: Request,
    db: DbSession,
    order_id: int,
    body: TransferRequest,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
):
    """Move an order to another table, freeing the old one and occupying the new one."""
    OrderLifecycleService(db).transfer_table(
        order_id,
        body.new_table_id,
        confirm_occupied=body.confirm_occupied,
        expected_version=body.expected_version,
    )
    schedule_publish(background_tasks, db)
    return _order_response(db, order_id)


@router.post("/{order_id}/recalculate", response_model=OrderTotalsResponse)
@limiter.limit("30/minute")
def recalculate_order(
    request: Request,
    db: DbSession,
    order_id: int,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
):
    """Rebuild an open order's totals from its lines."""
    totals = OrderTotalsService(db).recalculate_order(order_id)
    schedule_publish(background_tasks, db)
    return OrderTotalsResponse(
        order_id=order_id,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        total_amount=totals.total_amount,
    )


# ============== ORDER ITEMS ==============

@router.post("/{order_id}/items", response_model=OrderItemResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def add_order_item(
    request: Request,
    db: DbSession,
    order_id: int,
    body: OrderItemAdd,
    current_user: RequireStaff,
    background_tasks: BackgroundTasks,
):
    """Add a line to an open order."""
    item = OrderItemService(db).add_item(
        order_id,
        body.menu_item_id,
        body.quantity,
        cooking_point_id=body.cooking_point_id,
        notes=body.notes,
        side_ids=body.side_ids,
        expected_version=body.expected_version,
    )
    schedule_publish(background_tasks, db)
    return OrderItemResponse.model_validate(item)


@router.patch("/items/{item_id}", response_model=Optional[OrderItemResponse])
@limiter.limit("60/minute")
def update_order_item(
    request: Request,
    db: DbSession,
    item_id: int,
    body: QuantityUpdate,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
):
    """Set a line's quantity. Quantity 0 removes the line (response body is null)."""
    item = OrderItemService(db).update_quantity(item_id, body.quantity, expected_version=body.expected_version)
    schedule_publish(background_tasks, db)
    return OrderItemResponse.model_validate(item) if item is not None else None


@router.post("/items/{item_id}/remove", response_model=Optional[OrderItemResponse])
@limiter.limit("60/minute")
def remove_order_item_quantity(
    request: Request,
    db: DbSession,
    item_id: int,
    body: QuantityRemove,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
):
    """Take some units off a line; the line disappears when none remain."""
    item = OrderItemService(db).remove_quantity(item_id, body.amount, expected_version=body.expected_version)
    schedule_publish(background_tasks, db)
    return OrderItemResponse.model_validate(item) if item is not None else None


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
def delete_order_item(
    request: Request,
    db: DbSession,
    item_id: int,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
    expected_version: Optional[int] = None,
):
    """Remove a line and its sides."""
    OrderItemService(db).delete_item(item_id, expected_version=expected_version)
    schedule_publish(background_tasks, db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/items/{item_id}/sides", response_model=OrderItemResponse)
@limiter.limit("60/minute")
def replace_order_item_sides(
    request: Request,
    db: DbSession,
    item_id: int,
    body: SidesReplace,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
):
    """Replace a line's side selection."""
    item = OrderItemService(db).replace_sides(item_id, body.side_ids, expected_version=body.expected_version)
    schedule_publish(background_tasks, db)
    return OrderItemResponse.model_validate(item)
