"""
Inventory Balance database model.

Running quantity and weighted-average cost per (site, item).
"""

from sqlalchemy import Column, Integer, Float, String, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from p2p_backend.app.db.session import Base


class InventoryBalance(Base):
    """
    Inventory Balance model.

    Created lazily on the first movement for a (site, item) pair and never
    deleted. Concurrent receipts for the same item are serialized by the
    version column: the loser of a race re-runs its whole posting.
    """
    __tablename__ = "inventory_balances"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    site_id = Column(String(64), nullable=False)
    item_id = Column(String(64), nullable=False)

    qty_on_hand = Column(Float, nullable=False, default=0.0)
    avg_cost_per_unit = Column(Float, nullable=False, default=0.0)
    total_value = Column(Float, nullable=False, default=0.0)

    last_movement_id = Column(Integer, nullable=True)
    last_movement_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("tenant_id", "site_id", "item_id", name="uq_inventory_balances_site_item"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<InventoryBalance(site='{self.site_id}', item='{self.item_id}', qty={self.qty_on_hand}, avg={self.avg_cost_per_unit})>"
