"""
Audit Log Database Model.

Tracks posting-engine actions on business events for operational review.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from p2p_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking posting actions.

    Events logged:
    - EVENT_CREATED
    - EVENT_POSTING_FAILED
    - EVENT_REVERSED
    - EVENT_RESUBMITTED
    - PENDING_EVENTS_DRAINED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)

    # Who performed the action (None for system actions)
    actor_id = Column(String(64), index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which business event it concerned (None for batch actions)
    event_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', event_id={self.event_id})>"
