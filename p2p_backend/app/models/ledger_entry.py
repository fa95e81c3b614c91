"""
Ledger Entry database model.

Immutable double-entry accounting lines.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime, String, JSON
from sqlalchemy.sql import func
from p2p_backend.app.db.session import Base


class LedgerEntry(Base):
    """
    Ledger Entry model.

    One line of a Ledger Transaction; exactly one of debit/credit is nonzero.
    NO updates or deletions allowed.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)

    # Linkage
    transaction_id = Column(Integer, ForeignKey('ledger_transactions.id'), nullable=False, index=True)
    event_id = Column(Integer, nullable=False, index=True)
    line_number = Column(Integer, nullable=False)

    # Financials
    account_id = Column(String(64), nullable=False, index=True)
    debit = Column(Float, nullable=False, default=0.0)
    credit = Column(Float, nullable=False, default=0.0)
    memo = Column(String(255), nullable=True)

    # Subledger tags
    vendor_id = Column(String(64), nullable=True, index=True)
    bill_ids = Column(JSON, nullable=True)

    reverses_entry_id = Column(Integer, nullable=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, account='{self.account_id}', debit={self.debit}, credit={self.credit})>"
