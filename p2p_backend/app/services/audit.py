"""
Audit logging service for posting-engine actions.

Records who created, failed, reversed or resubmitted a business event.
Entries are added to the caller's session; the caller commits.
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from p2p_backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    EVENT_CREATED = "EVENT_CREATED"
    EVENT_POSTING_FAILED = "EVENT_POSTING_FAILED"
    EVENT_REVERSED = "EVENT_REVERSED"
    EVENT_RESUBMITTED = "EVENT_RESUBMITTED"
    PENDING_EVENTS_DRAINED = "PENDING_EVENTS_DRAINED"


async def log_event(
    db: AsyncSession,
    tenant_id: str,
    action: str,
    actor_id: Optional[str] = None,
    actor_username: Optional[str] = None,
    event_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add an audit entry to the session.

    Args:
        db: Database session
        tenant_id: Tenant the action belongs to
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action, None for the engine itself
        actor_username: Username of actor
        event_id: Business event the action concerned
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        event_id=event_id,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    tenant_id: str,
    event_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> List[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        tenant_id: Tenant to read
        event_id: Filter by business event
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).where(AuditLog.tenant_id == tenant_id).order_by(
        desc(AuditLog.timestamp), desc(AuditLog.id)
    )

    if event_id:
        query = query.where(AuditLog.event_id == event_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
