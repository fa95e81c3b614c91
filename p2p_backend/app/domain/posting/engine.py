"""
Posting Engine (Domain Logic).

Orchestrates the posting of business events into the ledger and the
inventory balances, and the compensating reversal of posted events.

Each posting runs as one atomic unit:
1. Load the event (replay POSTED events unchanged)
2. Claim it (PROCESSING + lease)
3. Dispatch on the event type to its posting rule
4. Validate the debit/credit balance
5. Write the ledger transaction, entries, movements and balances
6. Mark the event POSTED

When the unit fails, `process_event` records the failure on the event in
a separate write and re-raises.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from p2p_backend.app.core.config import settings
from p2p_backend.app.core.exceptions import (
    AppException,
    ConcurrencyConflictError,
    EventLockedError,
    InvalidStateError,
    PostingError,
    PostingValidationError,
    ResourceNotFoundError,
)
from p2p_backend.app.core.reliability import run_atomic
from p2p_backend.app.domain.posting.accounts import AccountMapping, default_account_mapping
from p2p_backend.app.domain.posting.inventory_builder import (
    build_receipt_movements,
    load_reversal_inputs,
    write_movements,
)
from p2p_backend.app.domain.posting.rules import PostingEntry, resolve_rule, validate_balance
from p2p_backend.app.models.business_event import BusinessEvent
from p2p_backend.app.models.enums import EventStatus
from p2p_backend.app.models.event_types import is_reversal_type, reversal_type_for
from p2p_backend.app.schemas.payloads import ReversalPayload, parse_payload
from p2p_backend.app.services.audit import AuditAction, log_event
from p2p_backend.app.services.event_lease import clear_lease
from p2p_backend.app.services.event_store import (
    acquire_event_lock,
    get_event_by_idempotency_key,
    get_event_or_404,
    list_pending_event_ids,
    mark_event_failed,
    recover_stale_locks,
)
from p2p_backend.app.services.inventory_store import get_movements_by_ids
from p2p_backend.app.services.ledger_store import (
    get_entries_for_transaction,
    get_transaction_for_event,
    write_transaction,
)

logger = logging.getLogger("p2p_backend.posting")

# Errors that leave the event untouched: nothing was attempted, or it may be retried as is
UNRECORDED_ERRORS = (ResourceNotFoundError, InvalidStateError, ConcurrencyConflictError)


@dataclass
class PostingOutcome:
    """Result of the atomic posting step for one event."""
    event_id: int
    event_type: str
    status: EventStatus
    posting_results: Dict[str, Any]
    replayed: bool = False
    non_posting: bool = False


@dataclass
class BatchItemResult:
    event_id: int
    status: str
    error: Optional[str] = None
    posting_results: Optional[Dict[str, Any]] = None


@dataclass
class BatchResult:
    """Summary of one drain of the pending queue."""
    worker_id: str
    recovered_event_ids: List[int] = field(default_factory=list)
    items: List[BatchItemResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.items)

    @property
    def posted(self) -> int:
        return sum(1 for item in self.items if item.status == EventStatus.POSTED.value)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.status == EventStatus.FAILED.value)


@dataclass
class ReversalOutcome:
    original_event_id: int
    reversal_event_id: int
    posting_results: Dict[str, Any]


def _results(
    ledger_transaction_id: Optional[int] = None,
    movement_ids: Optional[List[int]] = None,
    entries_count: int = 0,
    total_debits: float = 0.0,
    total_credits: float = 0.0,
) -> Dict[str, Any]:
    return {
        "ledger_transaction_id": ledger_transaction_id,
        "inventory_movement_ids": movement_ids or [],
        "entries_count": entries_count,
        "total_debits": total_debits,
        "total_credits": total_credits,
    }


class PostingEngine:
    """
    Posts business events of one deployment.

    Args:
        session_factory: async_sessionmaker each atomic unit opens its session from
        accounts: Chart-of-accounts mapping used by the posting rules
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        accounts: Optional[AccountMapping] = None,
        *,
        lock_ttl_seconds: Optional[int] = None,
        tolerance: Optional[float] = None,
        conflict_retries: Optional[int] = None,
        batch_limit: Optional[int] = None,
        worker_prefix: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.accounts = accounts or default_account_mapping()
        self.lock_ttl_seconds = lock_ttl_seconds or settings.event_lock_ttl_seconds
        self.tolerance = settings.posting_balance_tolerance if tolerance is None else tolerance
        self.conflict_retries = conflict_retries or settings.posting_conflict_retries
        self.batch_limit = batch_limit or settings.posting_batch_limit
        self.worker_prefix = worker_prefix or settings.posting_worker_prefix

    def new_worker_id(self) -> str:
        return f"{self.worker_prefix}-{uuid.uuid4().hex[:12]}"

    # Posting

    async def post_event(self, tenant_id: str, event_id: int, worker_id: str) -> PostingOutcome:
        """
        Atomic posting step. Commits everything or nothing.

        Raises:
            ResourceNotFoundError: unknown event
            EventLockedError: another worker holds a live lease
            InvalidStateError: event is FAILED or REVERSED
            PostingError: payload invalid or entries unbalanced
            ConcurrencyConflictError: conflicting writers on every attempt
        """
        async def work(db: AsyncSession) -> PostingOutcome:
            return await self._post(db, tenant_id, event_id, worker_id)

        return await run_atomic(
            self.session_factory, work,
            attempts=self.conflict_retries,
            label=f"posting of event {event_id}",
        )

    async def _post(self, db: AsyncSession, tenant_id: str, event_id: int, worker_id: str) -> PostingOutcome:
        event = await get_event_or_404(db, tenant_id, event_id)

        if event.status == EventStatus.POSTED:
            logger.info("Event already posted, replaying results", extra={"event_id": event.id})
            return PostingOutcome(event.id, event.type, event.status, event.posting_results or {}, replayed=True)

        previous_holder = event.locked_by if event.status == EventStatus.PROCESSING else None
        if await acquire_event_lock(db, tenant_id, event.id, worker_id, self.lock_ttl_seconds) is None:
            if event.status == EventStatus.PROCESSING:
                raise EventLockedError(event.id, event.locked_by)
            raise InvalidStateError(
                f"Event {event.id} cannot be processed in status {event.status.value}",
                current_status=event.status
            )
        if previous_holder and previous_holder != worker_id:
            logger.warning(
                "Reclaiming event with expired lease",
                extra={"event_id": event.id, "previous_holder": previous_holder, "worker_id": worker_id}
            )

        rule = resolve_rule(event.type)
        if rule is None:
            results = _results()
            non_posting = True
        else:
            payload = parse_payload(rule.payload_model, event.type, event.payload)
            entries = rule.build_entries(payload, self.accounts)
            total_debits, total_credits = validate_balance(entries, self.tolerance)

            movements = []
            if rule.moves_inventory:
                movements = await build_receipt_movements(db, event, payload)

            transaction = await write_transaction(
                db,
                tenant_id=tenant_id,
                event_id=event.id,
                event_type=event.type,
                idempotency_key=event.idempotency_key,
                entries=entries,
                total_amount=total_debits,
                site_id=event.site_id,
                occurred_at=event.occurred_at,
            )
            results = _results(transaction.id, [m.id for m in movements], len(entries), total_debits, total_credits)
            non_posting = False

        event.status = EventStatus.POSTED
        event.posted_at = datetime.utcnow()
        event.posting_results = results
        event.error = None
        clear_lease(event)
        await db.flush()

        logger.info(
            "Event posted",
            extra={
                "event_id": event.id,
                "event_type": event.type,
                "worker_id": worker_id,
                "ledger_transaction_id": results["ledger_transaction_id"],
                "entries_count": results["entries_count"],
            }
        )
        return PostingOutcome(event.id, event.type, event.status, results, non_posting=non_posting)

    async def process_event(self, tenant_id: str, event_id: int, worker_id: Optional[str] = None) -> PostingOutcome:
        """
        Post one event and record a failure on it when posting aborts.

        PostingError and unexpected errors mark the event FAILED before being
        re-raised. Not-found, state and concurrency errors leave it as is.
        """
        worker_id = worker_id or self.new_worker_id()
        try:
            return await self.post_event(tenant_id, event_id, worker_id)
        except UNRECORDED_ERRORS:
            raise
        except PostingError as exc:
            logger.warning(
                "Event posting failed",
                extra={"event_id": event_id, "error_code": exc.error_code, "error": exc.message}
            )
            await self._record_failure(tenant_id, event_id, exc.message)
            raise
        except Exception as exc:
            logger.exception("Unexpected error while posting event", extra={"event_id": event_id})
            await self._record_failure(tenant_id, event_id, f"{type(exc).__name__}: {exc}")
            raise

    async def _record_failure(self, tenant_id: str, event_id: int, error: str) -> None:
        async def work(db: AsyncSession) -> None:
            event = await mark_event_failed(db, tenant_id, event_id, error)
            if event is not None:
                await log_event(
                    db,
                    tenant_id=tenant_id,
                    action=AuditAction.EVENT_POSTING_FAILED,
                    event_id=event_id,
                    metadata={"error": error, "event_type": event.type}
                )

        try:
            await run_atomic(self.session_factory, work, attempts=self.conflict_retries,
                             label=f"failure record of event {event_id}")
        except ConcurrencyConflictError:
            logger.error("Could not record posting failure", extra={"event_id": event_id, "error": error})

    # Batch drain

    async def process_pending_events(self, tenant_id: str, limit: Optional[int] = None) -> BatchResult:
        """
        Post the tenant's PENDING events, oldest first.

        Expired PROCESSING leases are returned to PENDING first. A failing
        event is recorded and the batch moves on.
        """
        limit = limit or self.batch_limit
        result = BatchResult(worker_id=self.new_worker_id())

        async def recover(db: AsyncSession) -> List[int]:
            return await recover_stale_locks(db, tenant_id)

        result.recovered_event_ids = await run_atomic(self.session_factory, recover, label="stale lease recovery")
        if result.recovered_event_ids:
            logger.warning(
                "Recovered events with expired leases",
                extra={"tenant_id": tenant_id, "event_ids": result.recovered_event_ids}
            )

        async def pending(db: AsyncSession) -> List[int]:
            return await list_pending_event_ids(db, tenant_id, limit)

        event_ids = await run_atomic(self.session_factory, pending, label="pending event scan")

        for event_id in event_ids:
            try:
                outcome = await self.process_event(tenant_id, event_id, result.worker_id)
                result.items.append(BatchItemResult(event_id, outcome.status.value, posting_results=outcome.posting_results))
            except PostingError as exc:
                result.items.append(BatchItemResult(event_id, EventStatus.FAILED.value, error=exc.message))
            except AppException as exc:
                result.items.append(BatchItemResult(event_id, "SKIPPED", error=exc.message))
            except Exception as exc:
                result.items.append(BatchItemResult(event_id, EventStatus.FAILED.value, error=f"{type(exc).__name__}: {exc}"))

        async def audit(db: AsyncSession) -> None:
            await log_event(
                db,
                tenant_id=tenant_id,
                action=AuditAction.PENDING_EVENTS_DRAINED,
                actor_id=result.worker_id,
                metadata={
                    "processed": result.processed,
                    "posted": result.posted,
                    "failed": result.failed,
                    "recovered_event_ids": result.recovered_event_ids,
                }
            )

        await run_atomic(self.session_factory, audit, label="drain audit")

        logger.info(
            "Pending events drained",
            extra={
                "tenant_id": tenant_id,
                "worker_id": result.worker_id,
                "processed": result.processed,
                "posted": result.posted,
                "failed": result.failed,
            }
        )
        return result

    # Reversal

    async def reverse_event(self, tenant_id: str, event_id: int, user_id: str, reason: str) -> ReversalOutcome:
        """
        Compensate a POSTED event with a reversal event.

        Swaps every ledger line, negates every inventory movement, and marks
        the original REVERSED, all in one atomic unit.

        Raises:
            PostingValidationError: reason is blank
            ResourceNotFoundError: unknown event
            InvalidStateError: event not POSTED, already reversed, or itself a reversal
        """
        if not reason or not reason.strip():
            raise PostingValidationError("Reversal reason is required")

        async def work(db: AsyncSession) -> ReversalOutcome:
            return await self._reverse(db, tenant_id, event_id, user_id, reason.strip())

        return await run_atomic(
            self.session_factory, work,
            attempts=self.conflict_retries,
            label=f"reversal of event {event_id}",
        )

    async def _reverse(
        self,
        db: AsyncSession,
        tenant_id: str,
        event_id: int,
        user_id: str,
        reason: str
    ) -> ReversalOutcome:
        original = await get_event_or_404(db, tenant_id, event_id)

        if is_reversal_type(original.type):
            raise InvalidStateError(f"Event {original.id} is a reversal and cannot be reversed",
                                    current_status=original.status)
        if original.status != EventStatus.POSTED:
            raise InvalidStateError(
                f"Only POSTED events can be reversed (event {original.id} is {original.status.value})",
                current_status=original.status
            )
        if original.reversed_by_event_id:
            raise InvalidStateError(f"Event {original.id} is already reversed", current_status=original.status)

        # Reads
        transaction = await get_transaction_for_event(db, tenant_id, original.id)
        entries = await get_entries_for_transaction(db, tenant_id, transaction.id) if transaction else []
        movement_ids = (original.posting_results or {}).get("inventory_movement_ids") or []
        movements = await get_movements_by_ids(db, tenant_id, movement_ids)
        planned, balances = await load_reversal_inputs(db, tenant_id, movements)
        idempotency_key = f"reversal-{original.id}"
        taken_by = await get_event_by_idempotency_key(db, tenant_id, idempotency_key)
        if taken_by is not None:
            raise InvalidStateError(
                f"Cannot reverse event {original.id}: key {idempotency_key} is already used by event {taken_by.id}",
                current_status=original.status
            )

        # Writes
        now = datetime.utcnow()
        reversal = BusinessEvent(
            tenant_id=tenant_id,
            site_id=original.site_id,
            type=reversal_type_for(original.type),
            status=EventStatus.PROCESSING,
            idempotency_key=idempotency_key,
            source_type="REVERSAL",
            source_id=str(original.id),
            payload=ReversalPayload(
                original_event_id=original.id,
                original_event_type=original.type,
                reason=reason,
            ).model_dump(by_alias=True),
            created_by=user_id,
            occurred_at=now,
            reverses_event_id=original.id,
            retry_count=0,
        )
        db.add(reversal)
        await db.flush()  # To get reversal.id

        original.status = EventStatus.REVERSED
        original.reversed_by_event_id = reversal.id
        original.reversed_at = now
        original.reversed_by = user_id
        original.reversal_reason = reason

        results = _results()
        if transaction is not None:
            swapped = [
                PostingEntry(
                    account_id=entry.account_id,
                    debit=entry.credit,
                    credit=entry.debit,
                    memo=f"Reversal: {entry.memo or ''}",
                    vendor_id=entry.vendor_id,
                    bill_ids=entry.bill_ids,
                )
                for entry in entries
            ]
            total_debits = round(sum(entry.debit for entry in entries), 2)
            total_credits = round(sum(entry.credit for entry in entries), 2)
            reversal_tx = await write_transaction(
                db,
                tenant_id=tenant_id,
                event_id=reversal.id,
                event_type=reversal.type,
                idempotency_key=idempotency_key,
                entries=swapped,
                total_amount=total_debits,
                site_id=original.site_id,
                occurred_at=now,
                reverses_transaction_id=transaction.id,
                reverses_entry_ids=[entry.id for entry in entries],
            )
            results = _results(reversal_tx.id, entries_count=len(swapped),
                               total_debits=total_credits, total_credits=total_debits)

        written = await write_movements(db, reversal, planned, balances)
        results["inventory_movement_ids"] = [m.id for m in written]
        results["reversed_event_id"] = original.id

        reversal.status = EventStatus.POSTED
        reversal.posted_at = now
        reversal.posting_results = results

        await log_event(
            db,
            tenant_id=tenant_id,
            action=AuditAction.EVENT_REVERSED,
            actor_id=user_id,
            event_id=original.id,
            metadata={"reversal_event_id": reversal.id, "reason": reason}
        )
        await db.flush()

        logger.info(
            "Event reversed",
            extra={
                "event_id": original.id,
                "reversal_event_id": reversal.id,
                "ledger_transaction_id": results["ledger_transaction_id"],
                "movements": len(written),
            }
        )
        return ReversalOutcome(original.id, reversal.id, results)
