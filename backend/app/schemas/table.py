"""Table schemas."""

from typing import List, Optional

from pydantic import BaseModel


class TableResponse(BaseModel):
    """Table with its occupancy flag (True = available)."""

    id: int
    number: int
    capacity: int
    active: bool
    status: bool
    current_order_id: Optional[int] = None

    model_config = {"from_attributes": True}


class OccupancyChange(BaseModel):
    table_id: int
    number: int
    was_available: bool
    available: bool


class ReconcileResponse(BaseModel):
    changed: List[OccupancyChange]
    total_changed: int
