# Services module

from app.services.errors import (
    OrderEngineError,
    NotFoundError,
    OrderValidationError,
    InvalidTransitionError,
    TableOccupiedError,
    StaleOrderError,
)
from app.services.order_totals_service import OrderTotalsService, OrderTotals, compute_totals
from app.services.order_item_service import OrderItemService
from app.services.table_occupancy_service import TableOccupancyService
from app.services.order_lifecycle_service import OrderLifecycleService, NewOrderLine, can_transition
from app.services.payment_service import (
    PaymentService,
    SettlementRequest,
    SettlementBreakdown,
    compute_settlement,
)
from app.services.invoice_service import build_invoice, print_invoice_safely, set_invoice_printer
