"""
Inventory Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from p2p_backend.app.models.enums import MovementType


class InventoryBalanceResponse(BaseModel):
    """Schema for displaying an inventory balance."""
    site_id: str
    item_id: str
    qty_on_hand: float
    avg_cost_per_unit: float
    total_value: float
    last_movement_id: Optional[int]
    last_movement_at: Optional[datetime]

    class Config:
        from_attributes = True


class InventoryMovementResponse(BaseModel):
    """Schema for displaying an inventory movement."""
    id: int
    item_id: str
    site_id: str
    event_id: int
    event_type: str
    movement_type: MovementType
    qty: float
    unit_cost: float
    total_cost: float
    lot_number: Optional[str]
    expiration_date: Optional[str]
    storage_location: Optional[str]
    po_id: Optional[str]
    receipt_id: Optional[str]
    reverses_movement_id: Optional[int]
    occurred_at: datetime

    class Config:
        from_attributes = True
