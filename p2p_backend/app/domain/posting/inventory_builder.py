"""
Inventory Movement Builder.

Turns the lines of a posted receipt into inventory movements and updates
the weighted-average cost of each (site, item) balance. Also derives the
compensating movements of a reversal.

Every read is issued before the first write, so a concurrent update of
the same balance surfaces as a version conflict on flush and the whole
posting unit is retried.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_backend.app.core.exceptions import PostingValidationError
from p2p_backend.app.models.business_event import BusinessEvent
from p2p_backend.app.models.enums import MovementType
from p2p_backend.app.models.inventory_balance import InventoryBalance
from p2p_backend.app.models.inventory_movement import InventoryMovement
from p2p_backend.app.schemas.payloads import ReceiptLine, ReceiptPostedPayload
from p2p_backend.app.services.inventory_store import BalanceKey, get_balances


@dataclass
class BalanceState:
    """Running (qty, avg cost, value) of one balance while a posting is planned."""
    qty_on_hand: float = 0.0
    avg_cost_per_unit: float = 0.0
    total_value: float = 0.0

    @classmethod
    def of(cls, balance: Optional[InventoryBalance]) -> "BalanceState":
        if balance is None:
            return cls()
        return cls(balance.qty_on_hand or 0.0, balance.avg_cost_per_unit or 0.0, balance.total_value or 0.0)


@dataclass
class PlannedMovement:
    """One movement to write and the balance state it leaves behind."""
    site_id: str
    item_id: str
    movement_type: MovementType
    qty: float
    unit_cost: float
    total_cost: float
    after: BalanceState
    line: Optional[ReceiptLine] = None
    reverses_movement_id: Optional[int] = None
    po_id: Optional[str] = None
    receipt_id: Optional[str] = None


def _average(qty: float, value: float) -> float:
    if qty <= 0:
        return 0.0
    return round(value / qty, 2)


def apply_receipt(state: BalanceState, qty: float, line_total: float) -> BalanceState:
    """
    Weighted-average costing for an incoming quantity.

    new_value is priced from the current average, not the stored value.
    """
    new_qty = state.qty_on_hand + qty
    new_value = round(state.qty_on_hand * state.avg_cost_per_unit + line_total, 2)
    return BalanceState(new_qty, _average(new_qty, new_value), new_value)


def apply_reversal(state: BalanceState, qty: float, total_cost: float) -> BalanceState:
    """Apply a signed reversal movement (negated qty and cost) to a balance."""
    new_qty = state.qty_on_hand + qty
    new_value = round(state.total_value + total_cost, 2)
    return BalanceState(new_qty, _average(new_qty, new_value), new_value)


def validate_receipt(payload: ReceiptPostedPayload, site_id: Optional[str]) -> str:
    """
    Check every line before anything is read or written.

    Returns:
        The site the receipt posts to

    Raises:
        PostingValidationError: on the first invalid line
    """
    if not site_id:
        raise PostingValidationError("Receipt event is missing siteId")
    if not payload.lines:
        raise PostingValidationError("No lines found in event payload")

    for index, line in enumerate(payload.lines):
        if not line.item_id:
            raise PostingValidationError("Line is missing itemId", details={"line": index + 1})
        if line.qty_received is None or not math.isfinite(line.qty_received) or line.qty_received <= 0:
            raise PostingValidationError(
                f"Line has invalid qtyReceived: {line.qty_received}",
                details={"line": index + 1, "item_id": line.item_id}
            )
        if not math.isfinite(line.line_total):
            raise PostingValidationError(
                f"Line has invalid totalCost: {line.line_total}",
                details={"line": index + 1, "item_id": line.item_id}
            )
    return site_id


def plan_receipt(
    payload: ReceiptPostedPayload,
    site_id: str,
    balances: Dict[BalanceKey, InventoryBalance]
) -> List[PlannedMovement]:
    """Compute the movements of a validated receipt; lines of one item accumulate in order."""
    states: Dict[BalanceKey, BalanceState] = {}
    planned = []
    for line in payload.lines:
        key = (site_id, line.item_id)
        current = states.get(key) or BalanceState.of(balances.get(key))
        after = apply_receipt(current, line.qty_received, line.line_total)
        states[key] = after
        planned.append(PlannedMovement(
            site_id=site_id,
            item_id=line.item_id,
            movement_type=MovementType.RECEIPT,
            qty=line.qty_received,
            unit_cost=line.unit_cost,
            total_cost=round(line.line_total, 2),
            after=after,
            line=line,
        ))
    return planned


def plan_reversal(
    movements: List[InventoryMovement],
    balances: Dict[BalanceKey, InventoryBalance]
) -> List[PlannedMovement]:
    """Compensating movements for the movements of a reversed event."""
    states: Dict[BalanceKey, BalanceState] = {}
    planned = []
    for movement in movements:
        key = (movement.site_id, movement.item_id)
        qty = -movement.qty
        total_cost = -movement.total_cost
        current = states.get(key) or BalanceState.of(balances.get(key))
        after = apply_reversal(current, qty, total_cost)
        states[key] = after
        planned.append(PlannedMovement(
            site_id=movement.site_id,
            item_id=movement.item_id,
            movement_type=MovementType.REVERSAL,
            qty=qty,
            unit_cost=movement.unit_cost,
            total_cost=total_cost,
            after=after,
            reverses_movement_id=movement.id,
            po_id=movement.po_id,
            receipt_id=movement.receipt_id,
        ))
    return planned


async def write_movements(
    db: AsyncSession,
    event: BusinessEvent,
    planned: List[PlannedMovement],
    balances: Dict[BalanceKey, InventoryBalance],
    po_id: Optional[str] = None,
    receipt_id: Optional[str] = None,
) -> List[InventoryMovement]:
    """
    Persist planned movements and the balances they update.

    Missing balances are created on first use and added to `balances`.
    """
    now = datetime.utcnow()
    written = []
    for plan in planned:
        line = plan.line
        movement = InventoryMovement(
            tenant_id=event.tenant_id,
            item_id=plan.item_id,
            site_id=plan.site_id,
            event_id=event.id,
            event_type=event.type,
            movement_type=plan.movement_type,
            qty=plan.qty,
            unit_cost=plan.unit_cost,
            total_cost=plan.total_cost,
            lot_number=line.lot_number if line else None,
            expiration_date=line.expiration_date if line else None,
            storage_location=line.storage_location if line else None,
            po_id=plan.po_id or po_id,
            receipt_id=plan.receipt_id or receipt_id,
            reverses_movement_id=plan.reverses_movement_id,
            occurred_at=event.occurred_at or now,
        )
        db.add(movement)
        await db.flush()  # To get movement.id

        key = (plan.site_id, plan.item_id)
        balance = balances.get(key)
        if balance is None:
            balance = InventoryBalance(tenant_id=event.tenant_id, site_id=plan.site_id, item_id=plan.item_id)
            db.add(balance)
            balances[key] = balance

        balance.qty_on_hand = plan.after.qty_on_hand
        balance.avg_cost_per_unit = plan.after.avg_cost_per_unit
        balance.total_value = plan.after.total_value
        balance.last_movement_id = movement.id
        balance.last_movement_at = now
        written.append(movement)

    await db.flush()
    return written


async def build_receipt_movements(
    db: AsyncSession,
    event: BusinessEvent,
    payload: ReceiptPostedPayload
) -> List[InventoryMovement]:
    """
    Inventory side of RECEIPT_POSTED.

    Validate all lines, read all balances, compute the new costs, then write.

    Raises:
        PostingValidationError: if any line is invalid (nothing is written)
    """
    site_id = validate_receipt(payload, event.site_id or payload.site_id)
    balances = await get_balances(db, event.tenant_id, [(site_id, line.item_id) for line in payload.lines])
    planned = plan_receipt(payload, site_id, balances)
    return await write_movements(
        db, event, planned, balances,
        po_id=payload.po_id,
        receipt_id=event.source_id,
    )


async def load_reversal_inputs(
    db: AsyncSession,
    tenant_id: str,
    movements: List[InventoryMovement]
) -> Tuple[List[PlannedMovement], Dict[BalanceKey, InventoryBalance]]:
    """Read the balances touched by `movements` and plan their reversal (no writes)."""
    balances = await get_balances(db, tenant_id, [(m.site_id, m.item_id) for m in movements])
    return plan_reversal(movements, balances), balances
