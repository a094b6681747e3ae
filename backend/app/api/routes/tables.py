"""Tables routes - occupancy view and repair."""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Request

from app.core.rate_limit import limiter
from app.core.rbac import RequireAdmin, RequireStaff
from app.db.session import DbSession
from app.models.restaurant import Table as TableModel
from app.schemas.order import OrderResponse
from app.schemas.table import OccupancyChange, ReconcileResponse, TableResponse
from app.services.change_feed import schedule_publish
from app.services.errors import NotFoundError
from app.services.order_queries import find_active_order, get_table
from app.services.table_occupancy_service import TableOccupancyService

logger = logging.getLogger(__name__)

router = APIRouter()


def _table_response(db: DbSession, table: TableModel) -> TableResponse:
    active = find_active_order(db, table.id)
    return TableResponse(
        id=table.id,
        number=table.number,
        capacity=table.capacity,
        active=table.active,
        status=table.status,
        current_order_id=active.id if active else None,
    )


@router.get("/", response_model=List[TableResponse])
@limiter.limit("60/minute")
def list_tables(request: Request, db: DbSession, current_user: RequireStaff, include_inactive: bool = False):
    """Tables ordered by number, with the order currently seated at each."""
    query = db.query(TableModel)
    if not include_inactive:
        query = query.filter(TableModel.active.is_(True))
    return [_table_response(db, t) for t in query.order_by(TableModel.number).all()]


@router.get("/{table_id}", response_model=TableResponse)
@limiter.limit("60/minute")
def get_table_detail(request: Request, db: DbSession, table_id: int, current_user: RequireStaff):
    return _table_response(db, get_table(db, table_id))


@router.get("/{table_id}/active-order", response_model=OrderResponse)
@limiter.limit("60/minute")
def get_table_active_order(request: Request, db: DbSession, table_id: int, current_user: RequireStaff):
    """The non-terminal order seated at a table. 404 when the table is free."""
    get_table(db, table_id)
    order = find_active_order(db, table_id)
    if order is None:
        raise NotFoundError("Active order for table", table_id)
    return OrderResponse.model_validate(order)


@router.post("/{table_id}/sync", response_model=TableResponse)
@limiter.limit("30/minute")
def sync_table(
    request: Request,
    db: DbSession,
    table_id: int,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
):
    """Rewrite one table's occupancy flag from its orders."""
    table = TableOccupancyService(db).sync_table(table_id)
    schedule_publish(background_tasks, db)
    return _table_response(db, table)


@router.post("/reconcile", response_model=ReconcileResponse)
@limiter.limit("10/minute")
def reconcile_tables(
    request: Request,
    db: DbSession,
    current_user: RequireAdmin,
    background_tasks: BackgroundTasks,
):
    """Repair occupancy drift on every active table."""
    changes = TableOccupancyService(db).reconcile_all()
    schedule_publish(background_tasks, db)
    logger.info(f"Occupancy reconcile requested by user {current_user.id}: {len(changes)} change(s)")
    return ReconcileResponse(
        changed=[OccupancyChange(**c) for c in changes],
        total_changed=len(changes),
    )
