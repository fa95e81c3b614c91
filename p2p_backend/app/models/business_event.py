"""
Business Event database model.

One row per P2P workflow action. The payload is immutable once created;
status, lease and posting-result fields change as the engine works.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum, UniqueConstraint, Index
from sqlalchemy.sql import func
from p2p_backend.app.db.session import Base
from p2p_backend.app.models.enums import EventStatus


class BusinessEvent(Base):
    """
    Business Event model.

    Lifecycle: PENDING -> PROCESSING -> POSTED | FAILED; POSTED -> REVERSED.
    The version column gives optimistic concurrency: two workers that read
    the same PENDING row cannot both commit a transition.
    """
    __tablename__ = "business_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    site_id = Column(String(64), nullable=True, index=True)

    # Classification
    type = Column(String(64), nullable=False, index=True)
    status = Column(Enum(EventStatus), default=EventStatus.PENDING, nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False)

    # Origin
    source_type = Column(String(64), nullable=False, default="API")
    source_id = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_by = Column(String(64), nullable=True)

    # Timestamps
    occurred_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    posted_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    # Lease (advisory lock)
    locked_by = Column(String(128), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Outcome
    posting_results = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)

    # Reversal linkage
    reversed_by_event_id = Column(Integer, nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    reversed_by = Column(String(64), nullable=True)
    reversal_reason = Column(Text, nullable=True)
    reverses_event_id = Column(Integer, nullable=True, index=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_business_events_idempotency"),
        Index("ix_business_events_drain", "tenant_id", "status", "created_at"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<BusinessEvent(id={self.id}, type='{self.type}', status='{self.status.value}')>"
