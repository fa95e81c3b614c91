"""
Batch drain tests.

One bad event must not stop the queue.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from p2p_backend.app.models.enums import EventStatus
from p2p_backend.app.services.audit import AuditAction, get_audit_trail
from p2p_backend.app.services.event_store import acquire_event_lock, get_event, list_events

TENANT_ID = "farm-1"


def _receipt(item_id, qty, unit_cost, total=None):
    line_total = qty * unit_cost
    return {
        "vendorId": "v1",
        "lines": [{"itemId": item_id, "qtyReceived": qty, "unitCost": unit_cost}],
        "totals": {"totalCost": line_total if total is None else total},
    }


@pytest.mark.asyncio
async def test_failing_event_does_not_stop_batch(posting_engine, session_factory, make_event):
    ids = [
        await make_event("RECEIPT_POSTED", _receipt("feed-1", 10, 2), source_id="r-1"),
        await make_event("RECEIPT_POSTED", _receipt("feed-2", 10, 2, total=5), source_id="r-2"),
        await make_event("PAYMENT_SENT", {"amount": 20, "vendorId": "v1"}, source_id="pay-1"),
        await make_event("PO_CREATED", {}, source_id="po-1"),
    ]

    result = await posting_engine.process_pending_events(TENANT_ID)

    assert [item.event_id for item in result.items] == ids
    assert [item.status for item in result.items] == ["POSTED", "FAILED", "POSTED", "POSTED"]
    assert result.processed == 4
    assert result.posted == 3
    assert result.failed == 1
    assert result.items[1].error == "Unbalanced transaction: debits=20.0, credits=5.0"

    async with session_factory() as db:
        failed = await get_event(db, TENANT_ID, ids[1])
        drained = await get_audit_trail(db, TENANT_ID, action=AuditAction.PENDING_EVENTS_DRAINED)
    assert failed.status == EventStatus.FAILED
    assert failed.error == result.items[1].error
    assert drained[0].meta_data["posted"] == 3


@pytest.mark.asyncio
async def test_non_finite_payload_fails_once(posting_engine, session_factory, make_event):
    bad = {"vendorId": "v1", "lines": [{"itemId": "feed-2", "qtyReceived": "nan", "unitCost": 2}]}
    ids = [
        await make_event("RECEIPT_POSTED", _receipt("feed-1", 10, 2), source_id="r-1"),
        await make_event("RECEIPT_POSTED", bad, source_id="r-2"),
    ]

    result = await posting_engine.process_pending_events(TENANT_ID)

    assert [item.status for item in result.items] == ["POSTED", "FAILED"]
    assert result.failed == 1

    async with session_factory() as db:
        failed = await get_event(db, TENANT_ID, ids[1])
    assert failed.status == EventStatus.FAILED

    rerun = await posting_engine.process_pending_events(TENANT_ID)
    assert rerun.items == []


@pytest.mark.asyncio
async def test_data_error_is_failed_not_skipped(posting_engine, session_factory, make_event, mocker):
    mocker.patch(
        "p2p_backend.app.domain.posting.engine.build_receipt_movements",
        side_effect=IntegrityError(
            "INSERT INTO inventory_movements", {}, Exception("NOT NULL constraint failed: inventory_movements.qty")
        ),
    )
    ids = [
        await make_event("RECEIPT_POSTED", _receipt("feed-1", 10, 2), source_id="r-1"),
        await make_event("PAYMENT_SENT", {"amount": 20, "vendorId": "v1"}, source_id="pay-1"),
    ]

    result = await posting_engine.process_pending_events(TENANT_ID)

    assert [item.status for item in result.items] == ["FAILED", "POSTED"]
    assert result.items[0].error.startswith("IntegrityError:")

    async with session_factory() as db:
        failed = await get_event(db, TENANT_ID, ids[0])
    assert failed.status == EventStatus.FAILED


@pytest.mark.asyncio
async def test_limit_takes_oldest_first(posting_engine, session_factory, make_event):
    ids = [await make_event("PO_SENT", {}, source_id=f"po-{n}") for n in range(5)]

    result = await posting_engine.process_pending_events(TENANT_ID, limit=2)

    assert [item.event_id for item in result.items] == ids[:2]
    async with session_factory() as db:
        pending = await list_events(db, TENANT_ID, status=EventStatus.PENDING)
    assert sorted(event.id for event in pending) == ids[2:]


@pytest.mark.asyncio
async def test_empty_queue(posting_engine):
    result = await posting_engine.process_pending_events(TENANT_ID)

    assert result.processed == 0
    assert result.items == []


@pytest.mark.asyncio
async def test_other_tenants_are_untouched(posting_engine, session_factory, make_event):
    foreign = await make_event("PO_SENT", {}, source_id="po-1", tenant_id="farm-2")

    await posting_engine.process_pending_events(TENANT_ID)

    async with session_factory() as db:
        event = await get_event(db, "farm-2", foreign)
    assert event.status == EventStatus.PENDING


@pytest.mark.asyncio
async def test_stale_claims_are_recovered_and_posted(posting_engine, session_factory, make_event):
    event_id = await make_event("PO_SENT", {}, source_id="po-1")
    long_ago = datetime.utcnow() - timedelta(hours=2)
    async with session_factory() as db:
        async with db.begin():
            await acquire_event_lock(db, TENANT_ID, event_id, holder="crashed-worker", ttl_seconds=300, now=long_ago)

    result = await posting_engine.process_pending_events(TENANT_ID)

    assert result.recovered_event_ids == [event_id]
    assert result.items[0].status == "POSTED"


@pytest.mark.asyncio
async def test_live_claims_are_left_alone(posting_engine, session_factory, make_event):
    event_id = await make_event("PO_SENT", {}, source_id="po-1")
    async with session_factory() as db:
        async with db.begin():
            await acquire_event_lock(db, TENANT_ID, event_id, holder="busy-worker", ttl_seconds=300)

    result = await posting_engine.process_pending_events(TENANT_ID)

    assert result.recovered_event_ids == []
    assert result.items == []
    async with session_factory() as db:
        assert (await get_event(db, TENANT_ID, event_id)).locked_by == "busy-worker"
