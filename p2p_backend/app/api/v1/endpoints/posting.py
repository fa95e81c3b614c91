"""
Posting API Endpoints.

Enqueue business events, post them, drain the pending queue, reverse
postings and resubmit failed events. The tenant always comes from the
caller's token.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from p2p_backend.app.db.session import get_db
from p2p_backend.app.models.enums import EventStatus
from p2p_backend.app.models.event_types import EventType
from p2p_backend.app.schemas.events import (
    EventCreate, EventCreateResponse, EventResponse, ProcessResponse,
    BatchResponse, BatchItemResponse, ReverseRequest, ReversalResponse, ResubmitRequest
)
from p2p_backend.app.core.dependencies import get_current_user, get_posting_engine
from p2p_backend.app.core.exceptions import PostingError
from p2p_backend.app.core.guards import require_manager
from p2p_backend.app.domain.posting.engine import PostingEngine
from p2p_backend.app.services import event_store
from p2p_backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/posting", tags=["Posting"])


@router.post("/events", response_model=EventCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    event_data: EventCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    engine: PostingEngine = Depends(get_posting_engine)
):
    """
    Enqueue a business event in PENDING.

    Re-sending an idempotency key returns the existing event with
    `created = false`. With `process_immediately` the event is posted
    right away; a posting failure is reported in `error` and leaves the
    event FAILED.
    """
    tenant_id = current_user["tenant_id"]
    idempotency_key = event_store.resolve_idempotency_key(
        tenant_id, event_data.type.value, event_data.payload, event_data.idempotency_key, event_data.source_id
    )

    try:
        event, created = await event_store.create_event(
            db,
            tenant_id=tenant_id,
            event_type=event_data.type.value,
            payload=event_data.payload,
            site_id=event_data.site_id,
            idempotency_key=idempotency_key,
            source_type=event_data.source_type,
            source_id=event_data.source_id,
            occurred_at=event_data.occurred_at,
            created_by=current_user["user_id"],
        )
    except IntegrityError:
        # A concurrent request stored the same idempotency key first
        await db.rollback()
        event = await event_store.get_event_by_idempotency_key(db, tenant_id, idempotency_key)
        if event is None:
            raise
        created = False
    if created:
        await log_event(
            db=db,
            tenant_id=tenant_id,
            action=AuditAction.EVENT_CREATED,
            actor_id=current_user["user_id"],
            actor_username=current_user.get("sub"),
            event_id=event.id,
            metadata={"type": event.type, "idempotency_key": event.idempotency_key}
        )
    await db.commit()

    processed = False
    error = None
    if event_data.process_immediately and event.status == EventStatus.PENDING:
        try:
            await engine.process_event(tenant_id, event.id)
            processed = True
        except PostingError as exc:
            error = exc.message

    await db.refresh(event)

    return EventCreateResponse(
        event=EventResponse.model_validate(event),
        created=created,
        processed=processed,
        error=error
    )


@router.get("/events", response_model=List[EventResponse])
async def list_events(
    status_filter: Optional[EventStatus] = Query(None, alias="status"),
    event_type: Optional[EventType] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the tenant's events, newest first."""
    return await event_store.list_events(
        db,
        current_user["tenant_id"],
        status=status_filter,
        event_type=event_type.value if event_type else None,
        limit=limit,
        offset=offset
    )


@router.post("/events/process-pending", response_model=BatchResponse)
async def process_pending_events(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    current_user: dict = Depends(require_manager),
    engine: PostingEngine = Depends(get_posting_engine)
):
    """
    Drain the tenant's PENDING queue, oldest first.

    Failing events are marked FAILED and reported per item; the batch
    itself always completes.
    """
    result = await engine.process_pending_events(current_user["tenant_id"], limit)

    return BatchResponse(
        worker_id=result.worker_id,
        processed=result.processed,
        posted=result.posted,
        failed=result.failed,
        recovered_event_ids=result.recovered_event_ids,
        items=[
            BatchItemResponse(
                event_id=item.event_id,
                status=item.status,
                error=item.error,
                posting_results=item.posting_results
            )
            for item in result.items
        ]
    )


@router.get("/events/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: int = Path(..., description="Business event ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await event_store.get_event_or_404(db, current_user["tenant_id"], event_id)


@router.post("/events/{event_id}/process", response_model=ProcessResponse)
async def process_event(
    event_id: int = Path(..., description="Business event ID"),
    current_user: dict = Depends(get_current_user),
    engine: PostingEngine = Depends(get_posting_engine)
):
    """
    Post one event.

    Re-processing a POSTED event returns its stored results (`replayed`).
    """
    outcome = await engine.process_event(current_user["tenant_id"], event_id)

    return ProcessResponse(
        event_id=outcome.event_id,
        event_type=outcome.event_type,
        status=outcome.status,
        posting_results=outcome.posting_results,
        replayed=outcome.replayed,
        non_posting=outcome.non_posting
    )


@router.post("/events/{event_id}/reverse", response_model=ReversalResponse)
async def reverse_event(
    request: ReverseRequest,
    event_id: int = Path(..., description="Business event ID"),
    current_user: dict = Depends(require_manager),
    engine: PostingEngine = Depends(get_posting_engine)
):
    """Reverse a POSTED event with a compensating reversal event."""
    outcome = await engine.reverse_event(
        current_user["tenant_id"],
        event_id,
        user_id=current_user["user_id"],
        reason=request.reason
    )

    return ReversalResponse(
        original_event_id=outcome.original_event_id,
        reversal_event_id=outcome.reversal_event_id,
        posting_results=outcome.posting_results
    )


@router.post("/events/{event_id}/resubmit", response_model=EventResponse)
async def resubmit_event(
    request: ResubmitRequest,
    event_id: int = Path(..., description="Business event ID"),
    current_user: dict = Depends(require_manager),
    db: AsyncSession = Depends(get_db)
):
    """Return a FAILED event to PENDING, optionally with a repaired payload."""
    tenant_id = current_user["tenant_id"]

    event = await event_store.resubmit_event(db, tenant_id, event_id, payload=request.payload)

    await log_event(
        db=db,
        tenant_id=tenant_id,
        action=AuditAction.EVENT_RESUBMITTED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        event_id=event.id,
        metadata={"retry_count": event.retry_count, "payload_replaced": request.payload is not None}
    )
    await db.commit()
    await db.refresh(event)

    return event
