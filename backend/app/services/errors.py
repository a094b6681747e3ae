"""Order engine exceptions.

Services raise these; ``app.main`` maps them onto HTTP responses.
"""

from typing import Optional


class OrderEngineError(Exception):
    """Base class for every failure raised by the order engine."""

    status_code = 400


class NotFoundError(OrderEngineError):
    """Raised when a referenced row does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class OrderValidationError(OrderEngineError):
    """Raised when input values break a business rule."""

    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class InvalidTransitionError(OrderEngineError):
    """Raised when an order cannot move to the requested status or is already closed."""

    status_code = 409

    def __init__(self, order_id: int, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(f"Order {order_id} cannot go from '{current}' to '{requested}'")


class TableOccupiedError(OrderEngineError):
    """Raised when a table already has an active order and no override was given."""

    status_code = 409

    def __init__(self, table_id: int, order_id: int):
        self.table_id = table_id
        self.order_id = order_id
        super().__init__(f"Table {table_id} is occupied by active order {order_id}")


class StaleOrderError(OrderEngineError):
    """Raised when a caller's version of a row is behind the stored one."""

    status_code = 409

    def __init__(self, entity: str, entity_id, expected: int, current: int):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.current = current
        super().__init__(
            f"Version conflict on {entity} {entity_id}: expected {expected}, current {current}"
        )
