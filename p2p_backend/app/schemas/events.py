"""
Business Event Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional
from p2p_backend.app.models.enums import EventStatus
from p2p_backend.app.models.event_types import EventType


class EventCreate(BaseModel):
    """Schema for enqueueing a business event."""
    type: EventType
    site_id: Optional[str] = Field(None, max_length=64)
    payload: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=255)
    source_type: str = Field("API", max_length=64)
    source_id: Optional[str] = Field(None, max_length=64)
    occurred_at: Optional[datetime] = None
    process_immediately: bool = False


class EventResponse(BaseModel):
    """Schema for displaying a business event."""
    id: int
    tenant_id: str
    site_id: Optional[str]
    type: str
    status: EventStatus
    idempotency_key: str
    source_type: str
    source_id: Optional[str]
    payload: Dict[str, Any]
    created_by: Optional[str]
    occurred_at: datetime
    created_at: datetime
    posted_at: Optional[datetime]
    failed_at: Optional[datetime]
    locked_by: Optional[str]
    posting_results: Optional[Dict[str, Any]]
    error: Optional[str]
    retry_count: int
    reversed_by_event_id: Optional[int]
    reversal_reason: Optional[str]
    reverses_event_id: Optional[int]

    class Config:
        from_attributes = True


class EventCreateResponse(BaseModel):
    """Created (or idempotently re-found) event, with the posting result when processed inline."""
    event: EventResponse
    created: bool
    processed: bool = False
    error: Optional[str] = None


class ProcessResponse(BaseModel):
    event_id: int
    event_type: str
    status: EventStatus
    posting_results: Dict[str, Any]
    replayed: bool
    non_posting: bool


class BatchItemResponse(BaseModel):
    event_id: int
    status: str
    error: Optional[str] = None
    posting_results: Optional[Dict[str, Any]] = None


class BatchResponse(BaseModel):
    """Summary of a pending-queue drain."""
    worker_id: str
    processed: int
    posted: int
    failed: int
    recovered_event_ids: List[int]
    items: List[BatchItemResponse]


class ReverseRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class ReversalResponse(BaseModel):
    original_event_id: int
    reversal_event_id: int
    posting_results: Dict[str, Any]


class ResubmitRequest(BaseModel):
    """Optional repaired payload for a FAILED event."""
    payload: Optional[Dict[str, Any]] = None
