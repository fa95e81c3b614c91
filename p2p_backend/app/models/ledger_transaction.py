"""
Ledger Transaction database model.

Header record of one balanced posting. Immutable: a reversal writes a new
transaction pointing back at the original.
"""

from sqlalchemy import Column, Integer, Float, String, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from p2p_backend.app.db.session import Base
from p2p_backend.app.models.enums import LedgerTransactionStatus


class LedgerTransaction(Base):
    """
    Ledger Transaction model.

    One per posted event. The idempotency key is unique per tenant so the
    same logical action can never produce two transactions.
    """
    __tablename__ = "ledger_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)

    # Source event
    event_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    site_id = Column(String(64), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=True)
    idempotency_key = Column(String(255), nullable=False)

    # Totals
    total_amount = Column(Float, nullable=False, default=0.0)
    entries_count = Column(Integer, nullable=False, default=0)

    status = Column(Enum(LedgerTransactionStatus), default=LedgerTransactionStatus.POSTED, nullable=False)
    reverses_transaction_id = Column(Integer, nullable=True, index=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_ledger_transactions_idempotency"),
    )

    def __repr__(self):
        return f"<LedgerTransaction(id={self.id}, event_id={self.event_id}, total={self.total_amount})>"
