"""
Inventory Movement database model.

Append-only audit trail of quantity changes.
"""

from sqlalchemy import Column, Integer, Float, String, DateTime, Enum
from sqlalchemy.sql import func
from p2p_backend.app.db.session import Base
from p2p_backend.app.models.enums import MovementType


class InventoryMovement(Base):
    """
    Inventory Movement model.

    Quantity and total cost are signed: receipts are positive, their
    reversals carry the negated values.
    """
    __tablename__ = "inventory_movements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    item_id = Column(String(64), nullable=False, index=True)
    site_id = Column(String(64), nullable=False, index=True)

    # Source event
    event_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    movement_type = Column(Enum(MovementType), nullable=False)

    # Quantities
    qty = Column(Float, nullable=False)
    unit_cost = Column(Float, nullable=False, default=0.0)
    total_cost = Column(Float, nullable=False, default=0.0)

    # Lot / storage metadata
    lot_number = Column(String(64), nullable=True)
    expiration_date = Column(String(32), nullable=True)
    storage_location = Column(String(128), nullable=True)

    # Workflow references
    po_id = Column(String(64), nullable=True)
    receipt_id = Column(String(64), nullable=True)

    reverses_movement_id = Column(Integer, nullable=True)

    occurred_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<InventoryMovement(id={self.id}, item='{self.item_id}', type='{self.movement_type.value}', qty={self.qty})>"
