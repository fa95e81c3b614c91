"""
Concurrency Tests.

Validates that conflicting writes are retried and finally surfaced.
"""

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from p2p_backend.app.core.exceptions import ConcurrencyConflictError
from p2p_backend.app.core.reliability import run_atomic
from p2p_backend.app.models.enums import EventStatus
from p2p_backend.app.services.event_store import get_event

TENANT_ID = "farm-1"


@pytest.mark.asyncio
async def test_conflicting_unit_is_retried(session_factory, mocker):
    """A unit that loses one race succeeds on the re-run."""
    work = mocker.AsyncMock(side_effect=[StaleDataError("version mismatch"), "done"])

    result = await run_atomic(session_factory, work, attempts=3)

    assert result == "done"
    assert work.await_count == 2


@pytest.mark.asyncio
async def test_conflicts_exhaust_into_error(session_factory, mocker):
    work = mocker.AsyncMock(side_effect=StaleDataError("version mismatch"))

    with pytest.raises(ConcurrencyConflictError) as exc:
        await run_atomic(session_factory, work, attempts=3, label="posting of event 7")

    assert work.await_count == 3
    assert exc.value.message == "posting of event 7 aborted after 3 conflicting attempts"
    assert exc.value.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("message", [
    "UNIQUE constraint failed: inventory_balances.tenant_id, inventory_balances.site_id, inventory_balances.item_id",
    'duplicate key value violates unique constraint "uq_business_events_idempotency"',
])
async def test_unique_race_is_retried(session_factory, mocker, message):
    work = mocker.AsyncMock(side_effect=[IntegrityError("INSERT", {}, Exception(message)), "done"])

    assert await run_atomic(session_factory, work, attempts=3) == "done"
    assert work.await_count == 2


@pytest.mark.asyncio
async def test_data_integrity_errors_are_not_retried(session_factory, mocker):
    work = mocker.AsyncMock(
        side_effect=IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: ledger_entries.debit"))
    )

    with pytest.raises(IntegrityError):
        await run_atomic(session_factory, work, attempts=3)

    assert work.await_count == 1


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(session_factory, mocker):
    work = mocker.AsyncMock(side_effect=ValueError("bad input"))

    with pytest.raises(ValueError):
        await run_atomic(session_factory, work, attempts=3)

    assert work.await_count == 1


@pytest.mark.asyncio
async def test_stale_version_is_detected(session_factory, make_event):
    """A writer holding an outdated copy of the row loses."""
    event_id = await make_event("PO_SENT", {}, source_id="po-1")

    async with session_factory() as slow:
        stale_copy = await get_event(slow, TENANT_ID, event_id)
        await slow.commit()

        async with session_factory() as fast:
            fresh_copy = await get_event(fast, TENANT_ID, event_id)
            fresh_copy.status = EventStatus.PROCESSING
            await fast.commit()

        stale_copy.status = EventStatus.FAILED
        with pytest.raises(StaleDataError):
            await slow.commit()


@pytest.mark.asyncio
async def test_concurrency_conflict_does_not_fail_event(posting_engine, session_factory, make_event, mocker):
    event_id = await make_event("PO_SENT", {}, source_id="po-1")
    mocker.patch(
        "p2p_backend.app.domain.posting.engine.resolve_rule",
        side_effect=StaleDataError("version mismatch"),
    )

    with pytest.raises(ConcurrencyConflictError):
        await posting_engine.process_event(TENANT_ID, event_id)

    async with session_factory() as db:
        event = await get_event(db, TENANT_ID, event_id)
    assert event.status == EventStatus.PENDING
    assert event.error is None
