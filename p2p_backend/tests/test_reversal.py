"""
Reversal tests.

A reversal must mirror the original posting line by line and restore the
inventory balances it touched.
"""

import pytest

from p2p_backend.app.core.exceptions import InvalidStateError, PostingValidationError
from p2p_backend.app.models.enums import EventStatus, MovementType
from p2p_backend.app.services.audit import AuditAction, get_audit_trail
from p2p_backend.app.services.event_store import get_event
from p2p_backend.app.services.inventory_store import get_balance, list_movements
from p2p_backend.app.services.ledger_store import (
    account_balances,
    get_entries_for_transaction,
    get_transaction,
    list_transactions,
)

TENANT_ID = "farm-1"
SITE_ID = "site-1"


@pytest.fixture
async def posted_receipt(posting_engine, make_event, receipt_payload):
    event_id = await make_event("RECEIPT_POSTED", receipt_payload, source_id="r-1")
    outcome = await posting_engine.process_event(TENANT_ID, event_id)
    return event_id, outcome.posting_results


@pytest.mark.asyncio
async def test_reversal_mirrors_receipt(posting_engine, session_factory, posted_receipt):
    event_id, original_results = posted_receipt

    outcome = await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Wrong quantity")

    assert outcome.original_event_id == event_id
    assert outcome.posting_results["reversed_event_id"] == event_id

    async with session_factory() as db:
        original = await get_event(db, TENANT_ID, event_id)
        reversal = await get_event(db, TENANT_ID, outcome.reversal_event_id)
        original_entries = await get_entries_for_transaction(db, TENANT_ID, original_results["ledger_transaction_id"])
        reversal_tx = await get_transaction(db, TENANT_ID, outcome.posting_results["ledger_transaction_id"])
        reversal_entries = await get_entries_for_transaction(db, TENANT_ID, reversal_tx.id)
        movements = await list_movements(db, TENANT_ID, event_id=reversal.id)
        balance = await get_balance(db, TENANT_ID, SITE_ID, "feed-1")

    assert original.status == EventStatus.REVERSED
    assert original.reversed_by_event_id == reversal.id
    assert original.reversed_by == "u-manager"
    assert original.reversal_reason == "Wrong quantity"
    assert original.reversed_at is not None

    assert reversal.type == "RECEIPT_POSTED_REVERSAL"
    assert reversal.status == EventStatus.POSTED
    assert reversal.reverses_event_id == event_id
    assert reversal.idempotency_key == f"reversal-{event_id}"
    assert reversal.payload["originalEventId"] == event_id
    assert reversal.payload["reason"] == "Wrong quantity"

    assert reversal_tx.reverses_transaction_id == original_results["ledger_transaction_id"]
    assert reversal_tx.total_amount == 500.0
    assert [(e.account_id, e.debit, e.credit) for e in reversal_entries] == [
        ("feed-inventory", 0.0, 500.0),
        ("accounts-payable", 500.0, 0.0),
    ]
    assert [e.reverses_entry_id for e in reversal_entries] == [e.id for e in original_entries]
    assert reversal_entries[0].memo == "Reversal: Receipt of goods - PO items"
    assert reversal_entries[1].vendor_id == "v1"

    assert len(movements) == 1
    assert movements[0].movement_type == MovementType.REVERSAL
    assert movements[0].qty == -100
    assert movements[0].total_cost == -500.0
    assert movements[0].reverses_movement_id == original_results["inventory_movement_ids"][0]
    assert (balance.qty_on_hand, balance.avg_cost_per_unit, balance.total_value) == (0, 0.0, 0.0)


@pytest.mark.asyncio
async def test_reversal_zeroes_the_trial_balance(posting_engine, session_factory, posted_receipt):
    event_id, _ = posted_receipt

    await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Duplicate")

    async with session_factory() as db:
        balances = await account_balances(db, TENANT_ID)
    assert {row["account_id"]: row["balance"] for row in balances} == {
        "accounts-payable": 0.0,
        "feed-inventory": 0.0,
    }


@pytest.mark.asyncio
async def test_reversal_restores_earlier_average(posting_engine, session_factory, make_event):
    first = await make_event("RECEIPT_POSTED", {
        "lines": [{"itemId": "feed-1", "qtyReceived": 10, "unitCost": 2}],
        "totals": {"totalCost": 20},
    }, source_id="r-1")
    second = await make_event("RECEIPT_POSTED", {
        "lines": [{"itemId": "feed-1", "qtyReceived": 5, "unitCost": 5}],
        "totals": {"totalCost": 25},
    }, source_id="r-2")
    await posting_engine.process_event(TENANT_ID, first)
    await posting_engine.process_event(TENANT_ID, second)

    await posting_engine.reverse_event(TENANT_ID, second, user_id="u-manager", reason="Returned to vendor")

    async with session_factory() as db:
        balance = await get_balance(db, TENANT_ID, SITE_ID, "feed-1")
    assert (balance.qty_on_hand, balance.avg_cost_per_unit, balance.total_value) == (10, 2.0, 20.0)


@pytest.mark.asyncio
async def test_reversal_of_non_posting_event(posting_engine, session_factory, make_event):
    event_id = await make_event("PO_SENT", {"poId": "po-1"}, source_id="po-1")
    await posting_engine.process_event(TENANT_ID, event_id)

    outcome = await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Sent by mistake")

    assert outcome.posting_results["ledger_transaction_id"] is None
    assert outcome.posting_results["inventory_movement_ids"] == []
    async with session_factory() as db:
        assert await list_transactions(db, TENANT_ID) == []
        reversal = await get_event(db, TENANT_ID, outcome.reversal_event_id)
    assert reversal.type == "PO_SENT_REVERSAL"
    assert reversal.status == EventStatus.POSTED


@pytest.mark.asyncio
async def test_pending_event_cannot_be_reversed(posting_engine, make_event, receipt_payload):
    event_id = await make_event("RECEIPT_POSTED", receipt_payload, source_id="r-1")

    with pytest.raises(InvalidStateError) as exc:
        await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Oops")
    assert exc.value.details["status"] == "PENDING"


@pytest.mark.asyncio
async def test_event_is_reversed_only_once(posting_engine, session_factory, posted_receipt):
    event_id, _ = posted_receipt
    await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Once")

    with pytest.raises(InvalidStateError):
        await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Twice")

    async with session_factory() as db:
        assert len(await list_transactions(db, TENANT_ID)) == 2


@pytest.mark.asyncio
async def test_reversal_key_already_taken(posting_engine, session_factory, make_event, posted_receipt):
    event_id, _ = posted_receipt
    other_id = await make_event("PO_CREATED", {}, idempotency_key=f"reversal-{event_id}")

    with pytest.raises(InvalidStateError) as exc:
        await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Wrong quantity")

    assert exc.value.message == (
        f"Cannot reverse event {event_id}: key reversal-{event_id} is already used by event {other_id}"
    )
    async with session_factory() as db:
        original = await get_event(db, TENANT_ID, event_id)
        assert len(await list_transactions(db, TENANT_ID)) == 1
    assert original.status == EventStatus.POSTED
    assert original.reversed_by_event_id is None


@pytest.mark.asyncio
async def test_reversal_event_cannot_be_reversed(posting_engine, posted_receipt):
    event_id, _ = posted_receipt
    outcome = await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Once")

    with pytest.raises(InvalidStateError):
        await posting_engine.reverse_event(TENANT_ID, outcome.reversal_event_id, user_id="u-manager", reason="Undo")


@pytest.mark.asyncio
async def test_reason_is_required(posting_engine, posted_receipt):
    event_id, _ = posted_receipt

    with pytest.raises(PostingValidationError):
        await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="   ")


@pytest.mark.asyncio
async def test_reversal_is_audited(posting_engine, session_factory, posted_receipt):
    event_id, _ = posted_receipt
    outcome = await posting_engine.reverse_event(TENANT_ID, event_id, user_id="u-manager", reason="Audit me")

    async with session_factory() as db:
        trail = await get_audit_trail(db, TENANT_ID, action=AuditAction.EVENT_REVERSED)

    assert len(trail) == 1
    assert trail[0].actor_id == "u-manager"
    assert trail[0].event_id == event_id
    assert trail[0].meta_data == {"reversal_event_id": outcome.reversal_event_id, "reason": "Audit me"}
