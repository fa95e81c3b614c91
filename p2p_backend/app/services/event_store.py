"""
Event Store service.

Persistence helpers for business events: append-only creation plus the
in-place status transitions the posting engine and operators perform.
Functions flush but never commit; the caller owns the transaction.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from p2p_backend.app.core.exceptions import InvalidStateError, ResourceNotFoundError
from p2p_backend.app.models.business_event import BusinessEvent
from p2p_backend.app.models.enums import EventStatus
from p2p_backend.app.services.event_lease import EventLease, can_claim, clear_lease

# Statuses from which a posting failure may be recorded
FAILABLE_STATUSES = (EventStatus.PENDING, EventStatus.PROCESSING, EventStatus.FAILED)


def generate_idempotency_key(tenant_id: str, reference: str, payload: Dict[str, Any], version: int = 1) -> str:
    """
    Deterministic key for a logical action.

    SHA-256 over tenant, reference, key version and the payload serialized
    with sorted keys.
    """
    stable_payload = json.dumps(payload or {}, sort_keys=True, default=str)
    data = f"{tenant_id}:{reference}:{version}:{stable_payload}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def resolve_idempotency_key(
    tenant_id: str,
    event_type: str,
    payload: Dict[str, Any],
    idempotency_key: Optional[str] = None,
    source_id: Optional[str] = None
) -> str:
    """The given key, else "<type>-<source_id>", else a payload hash."""
    if idempotency_key:
        return idempotency_key
    if source_id:
        return f"{event_type}-{source_id}"
    return generate_idempotency_key(tenant_id, f"{event_type}-{datetime.utcnow().isoformat()}", payload)


async def get_event(db: AsyncSession, tenant_id: str, event_id: int) -> Optional[BusinessEvent]:
    result = await db.execute(
        select(BusinessEvent).where(
            BusinessEvent.tenant_id == tenant_id,
            BusinessEvent.id == event_id
        )
    )
    return result.scalar_one_or_none()


async def get_event_or_404(db: AsyncSession, tenant_id: str, event_id: int) -> BusinessEvent:
    """
    Load an event of the tenant.

    Raises:
        ResourceNotFoundError: if no such event exists for the tenant
    """
    event = await get_event(db, tenant_id, event_id)
    if event is None:
        raise ResourceNotFoundError("Event", event_id)
    return event


async def get_event_by_idempotency_key(
    db: AsyncSession,
    tenant_id: str,
    idempotency_key: str
) -> Optional[BusinessEvent]:
    result = await db.execute(
        select(BusinessEvent).where(
            BusinessEvent.tenant_id == tenant_id,
            BusinessEvent.idempotency_key == idempotency_key
        )
    )
    return result.scalar_one_or_none()


async def create_event(
    db: AsyncSession,
    tenant_id: str,
    event_type: str,
    payload: Dict[str, Any],
    site_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    source_type: str = "API",
    source_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    created_by: Optional[str] = None,
) -> Tuple[BusinessEvent, bool]:
    """
    Enqueue a business event in PENDING.

    A repeated idempotency key returns the event already recorded for it
    instead of creating a second one.

    Args:
        db: Database session
        tenant_id: Owning tenant
        event_type: EventType value
        payload: Type-specific data written by the workflow component
        site_id: Site the event applies to (required for receipts)
        idempotency_key: Unique per logical action, e.g. "receipt-<id>-post".
            Defaults to "<type>-<source_id>", or a payload hash without a source id
        source_type: Originating document kind
        source_id: Originating document id
        occurred_at: Business time of the action
        created_by: Acting user id

    Returns:
        (event, created) where created is False for an idempotent repeat
    """
    idempotency_key = resolve_idempotency_key(tenant_id, event_type, payload, idempotency_key, source_id)
    existing = await get_event_by_idempotency_key(db, tenant_id, idempotency_key)
    if existing is not None:
        return existing, False

    event = BusinessEvent(
        tenant_id=tenant_id,
        site_id=site_id,
        type=event_type,
        status=EventStatus.PENDING,
        idempotency_key=idempotency_key,
        source_type=source_type or "API",
        source_id=source_id,
        payload=payload or {},
        occurred_at=occurred_at or datetime.utcnow(),
        created_by=created_by,
        retry_count=0,
    )
    db.add(event)
    await db.flush()  # Raises IntegrityError if a concurrent create won the key

    return event, True


async def list_events(
    db: AsyncSession,
    tenant_id: str,
    status: Optional[EventStatus] = None,
    event_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0
) -> List[BusinessEvent]:
    """List a tenant's events, newest first."""
    query = select(BusinessEvent).where(BusinessEvent.tenant_id == tenant_id)
    if status:
        query = query.where(BusinessEvent.status == status)
    if event_type:
        query = query.where(BusinessEvent.type == event_type)
    query = query.order_by(BusinessEvent.created_at.desc(), BusinessEvent.id.desc()).offset(offset).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def list_pending_event_ids(db: AsyncSession, tenant_id: str, limit: int) -> List[int]:
    """Oldest PENDING events first; id breaks creation-time ties."""
    result = await db.execute(
        select(BusinessEvent.id).where(
            BusinessEvent.tenant_id == tenant_id,
            BusinessEvent.status == EventStatus.PENDING
        ).order_by(BusinessEvent.created_at.asc(), BusinessEvent.id.asc()).limit(limit)
    )
    return list(result.scalars().all())


async def acquire_event_lock(
    db: AsyncSession,
    tenant_id: str,
    event_id: int,
    holder: str,
    ttl_seconds: int,
    now: Optional[datetime] = None
) -> Optional[BusinessEvent]:
    """
    Claim an event for processing (PENDING -> PROCESSING).

    A PROCESSING event whose lease has expired is reclaimed as well.

    Returns:
        The claimed event, or None if it is already processed or held by a live lease

    Raises:
        ResourceNotFoundError: if the event does not exist
    """
    event = await get_event_or_404(db, tenant_id, event_id)

    if event.status == EventStatus.PROCESSING:
        if not can_claim(event, holder, now):
            return None
    elif event.status != EventStatus.PENDING:
        return None

    lease = EventLease.grant(holder, ttl_seconds, now)
    lease.apply_to(event)
    event.status = EventStatus.PROCESSING
    event.processing_started_at = lease.acquired_at
    await db.flush()

    return event


async def mark_event_failed(
    db: AsyncSession,
    tenant_id: str,
    event_id: int,
    error: str
) -> Optional[BusinessEvent]:
    """
    Record a posting failure on the event.

    Idempotent: re-marking a FAILED event only refreshes the message, and a
    POSTED or REVERSED event is never downgraded.

    Returns:
        The updated event, or None if it was missing or already terminal
    """
    event = await get_event(db, tenant_id, event_id)
    if event is None or event.status not in FAILABLE_STATUSES:
        return None

    event.status = EventStatus.FAILED
    event.error = error
    event.failed_at = datetime.utcnow()
    clear_lease(event)
    await db.flush()

    return event


async def resubmit_event(
    db: AsyncSession,
    tenant_id: str,
    event_id: int,
    payload: Optional[Dict[str, Any]] = None
) -> BusinessEvent:
    """
    Put a FAILED event back in the queue (FAILED -> PENDING).

    Args:
        payload: Optional repaired payload replacing the stored one

    Raises:
        ResourceNotFoundError: if the event does not exist
        InvalidStateError: if the event is not FAILED
    """
    event = await get_event_or_404(db, tenant_id, event_id)
    if event.status != EventStatus.FAILED:
        raise InvalidStateError(
            f"Only FAILED events can be resubmitted (event {event_id} is {event.status.value})",
            current_status=event.status
        )

    if payload is not None:
        event.payload = dict(payload)
    event.status = EventStatus.PENDING
    event.error = None
    event.failed_at = None
    event.retry_count = (event.retry_count or 0) + 1
    event.last_retry_at = datetime.utcnow()
    clear_lease(event)
    await db.flush()

    return event


async def recover_stale_locks(db: AsyncSession, tenant_id: str, now: Optional[datetime] = None) -> List[int]:
    """
    Return PROCESSING events whose lease has expired to PENDING.

    Returns:
        Ids of the recovered events
    """
    result = await db.execute(
        select(BusinessEvent).where(
            BusinessEvent.tenant_id == tenant_id,
            BusinessEvent.status == EventStatus.PROCESSING
        )
    )
    stale = [event for event in result.scalars().all() if can_claim(event, holder="", now=now)]

    for event in stale:
        event.status = EventStatus.PENDING
        clear_lease(event)
    if stale:
        await db.flush()

    return [event.id for event in stale]
