"""Invoice assembly and hand-off to the printing collaborator.

Printing happens after the settlement has committed. A printer failure is
logged and reported back as a warning; it never touches order or payment
state.
"""

import logging
from typing import Any, Dict, Optional, Protocol

from app.models.order import Order
from app.models.payment import Payment

logger = logging.getLogger(__name__)


class InvoicePrinter(Protocol):
    def print_invoice(self, invoice: Dict[str, Any]) -> None:
        ...


class LoggingInvoicePrinter:
    """Default printer: writes the invoice summary to the log."""

    def print_invoice(self, invoice: Dict[str, Any]) -> None:
        logger.info(
            f"Invoice for order {invoice['order_id']} (table {invoice['table_number']}): "
            f"{len(invoice['items'])} line(s), grand total {invoice['grand_total']}"
        )


_printer: InvoicePrinter = LoggingInvoicePrinter()


def get_invoice_printer() -> InvoicePrinter:
    return _printer


def set_invoice_printer(printer: InvoicePrinter) -> None:
    """Swap the printer collaborator (a station printer bridge, a test double...)."""
    global _printer
    _printer = printer


def build_invoice(order: Order, payment: Optional[Payment] = None) -> Dict[str, Any]:
    """Fully computed invoice structure for a settled (or open) order."""
    items = []
    for item in order.items:
        items.append({
            "id": item.id,
            "name": item.menu_item.name if item.menu_item else f"Item {item.menu_item_id}",
            "quantity": item.quantity,
            "unit_price": float(item.unit_price),
            "subtotal": float(item.subtotal),
            "cooking_point": item.cooking_point.name if item.cooking_point else None,
            "sides": [s.side.name for s in item.sides if s.side is not None],
            "notes": item.notes,
        })

    method = payment.payment_method if payment is not None else None
    return {
        "order_id": order.id,
        "table_number": order.table.number if order.table else None,
        "diners_count": order.diners_count,
        "items": items,
        "subtotal": float(order.subtotal or 0),
        "tax_amount": float(order.tax_amount or 0),
        "total_amount": float(order.total_amount or 0),
        "tip_amount": float(order.tip_amount or 0),
        "grand_total": float(order.grand_total or 0),
        "paid_amount": float(order.paid_amount or 0),
        "change_amount": float(order.change_amount or 0),
        "payment_method": method.name if method is not None else None,
        "received_amount": (
            float(payment.received_amount)
            if payment is not None and payment.received_amount is not None
            else None
        ),
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }


def print_invoice_safely(invoice: Dict[str, Any]) -> Optional[str]:
    """Send an invoice to the printer. Returns a warning message instead of raising."""
    try:
        get_invoice_printer().print_invoice(invoice)
    except Exception as e:
        logger.warning(f"Printing invoice for order {invoice.get('order_id')} failed: {e}")
        return f"Payment recorded, but the invoice could not be printed: {e}"
    return None
