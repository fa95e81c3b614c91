"""
Inventory movement builder tests.

Weighted-average costing, line validation and reversal arithmetic.
"""

import pytest

from p2p_backend.app.core.exceptions import PostingValidationError
from p2p_backend.app.domain.posting.inventory_builder import (
    BalanceState,
    apply_receipt,
    apply_reversal,
    build_receipt_movements,
    plan_receipt,
    validate_receipt,
)
from p2p_backend.app.models.enums import MovementType
from p2p_backend.app.schemas.payloads import ReceiptPostedPayload
from p2p_backend.app.services.event_store import get_event
from p2p_backend.app.services.inventory_store import get_balance, list_movements

TENANT_ID = "farm-1"
SITE_ID = "site-1"


def _receipt(*lines):
    return ReceiptPostedPayload.model_validate({"vendorId": "v1", "lines": list(lines)})


def test_weighted_average_of_two_receipts():
    first = apply_receipt(BalanceState(), 10, 20)
    second = apply_receipt(first, 5, 25)

    assert second == BalanceState(qty_on_hand=15, avg_cost_per_unit=3.0, total_value=45.0)


def test_new_balance_starts_at_unit_cost():
    state = apply_receipt(BalanceState(), 100, 500)
    assert state == BalanceState(100, 5.0, 500.0)


def test_average_is_rounded_to_cents():
    state = apply_receipt(BalanceState(), 3, 10)
    assert state.avg_cost_per_unit == 3.33
    assert state.total_value == 10.0


def test_reversal_restores_previous_balance():
    before = BalanceState(10, 2.0, 20.0)
    after_receipt = apply_receipt(before, 5, 25)

    restored = apply_reversal(after_receipt, -5, -25)

    assert restored == before


def test_reversal_to_zero_clears_average():
    state = apply_reversal(BalanceState(100, 5.0, 500.0), -100, -500)
    assert state == BalanceState(0, 0.0, 0.0)


def test_lines_of_one_item_accumulate_in_order():
    payload = _receipt(
        {"itemId": "feed-1", "qtyReceived": 10, "unitCost": 2},
        {"itemId": "feed-1", "qtyReceived": 5, "unitCost": 5},
    )
    planned = plan_receipt(payload, SITE_ID, balances={})

    assert [plan.after.qty_on_hand for plan in planned] == [10, 15]
    assert planned[-1].after.avg_cost_per_unit == 3.0
    assert all(plan.movement_type == MovementType.RECEIPT for plan in planned)


@pytest.mark.parametrize("line, message", [
    ({"qtyReceived": 1, "unitCost": 1}, "Line is missing itemId"),
    ({"itemId": "feed-1", "unitCost": 1}, "Line has invalid qtyReceived: None"),
    ({"itemId": "feed-1", "qtyReceived": 0, "unitCost": 1}, "Line has invalid qtyReceived: 0.0"),
    ({"itemId": "feed-1", "qtyReceived": -3, "unitCost": 1}, "Line has invalid qtyReceived: -3.0"),
])
def test_invalid_line_rejected(line, message):
    payload = _receipt({"itemId": "ok", "qtyReceived": 1, "unitCost": 1}, line)
    with pytest.raises(PostingValidationError) as exc:
        validate_receipt(payload, SITE_ID)
    assert exc.value.message == message


def test_overflowing_line_total_is_rejected():
    payload = _receipt({"itemId": "feed-1", "qtyReceived": 1e308, "unitCost": 10})

    with pytest.raises(PostingValidationError) as exc:
        validate_receipt(payload, SITE_ID)
    assert exc.value.message == "Line has invalid totalCost: inf"


def test_site_is_required():
    with pytest.raises(PostingValidationError) as exc:
        validate_receipt(_receipt({"itemId": "feed-1", "qtyReceived": 1}), None)
    assert exc.value.message == "Receipt event is missing siteId"


@pytest.mark.asyncio
async def test_build_writes_movements_and_balances(session_factory, make_event):
    raw = {
        "poId": "po-7",
        "lines": [
            {"itemId": "feed-1", "qtyReceived": 10, "unitCost": 2, "lotNumber": "L-1"},
            {"itemId": "feed-1", "qtyReceived": 5, "unitCost": 5},
            {"itemId": "med-1", "qtyReceived": 2, "unitCost": 30, "category": "MEDICINE"},
        ],
    }
    event_id = await make_event("RECEIPT_POSTED", raw, source_id="r-7")

    async with session_factory() as db:
        async with db.begin():
            event = await get_event(db, TENANT_ID, event_id)
            movements = await build_receipt_movements(db, event, ReceiptPostedPayload.model_validate(raw))
            movement_ids = [m.id for m in movements]

    assert len(movement_ids) == 3

    async with session_factory() as db:
        feed = await get_balance(db, TENANT_ID, SITE_ID, "feed-1")
        medicine = await get_balance(db, TENANT_ID, SITE_ID, "med-1")
        stored = await list_movements(db, TENANT_ID, event_id=event_id)

    assert (feed.qty_on_hand, feed.avg_cost_per_unit, feed.total_value) == (15, 3.0, 45.0)
    assert feed.last_movement_id == movement_ids[1]
    assert (medicine.qty_on_hand, medicine.avg_cost_per_unit) == (2, 30.0)
    assert [m.id for m in stored] == movement_ids
    assert stored[0].lot_number == "L-1"
    assert stored[0].po_id == "po-7"
    assert stored[0].receipt_id == "r-7"


@pytest.mark.asyncio
async def test_invalid_line_writes_nothing(session_factory, make_event):
    event_id = await make_event("RECEIPT_POSTED", {}, source_id="r-8")
    payload = _receipt(
        {"itemId": "feed-1", "qtyReceived": 10, "unitCost": 2},
        {"itemId": "feed-2", "unitCost": 2},
    )

    async with session_factory() as db:
        with pytest.raises(PostingValidationError):
            async with db.begin():
                event = await get_event(db, TENANT_ID, event_id)
                await build_receipt_movements(db, event, payload)

    async with session_factory() as db:
        assert await get_balance(db, TENANT_ID, SITE_ID, "feed-1") is None
        assert await list_movements(db, TENANT_ID) == []
