"""
Inventory Store service.

Reads of inventory balances and movements. Writes happen in the
inventory movement builder, inside the posting unit.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from p2p_backend.app.models.inventory_balance import InventoryBalance
from p2p_backend.app.models.inventory_movement import InventoryMovement

BalanceKey = Tuple[str, str]  # (site_id, item_id)


async def get_balances(
    db: AsyncSession,
    tenant_id: str,
    keys: Iterable[BalanceKey]
) -> Dict[BalanceKey, InventoryBalance]:
    """
    Load the balances for a set of (site, item) pairs in one query.

    Pairs without a balance row are simply absent from the result.
    """
    keys = set(keys)
    if not keys:
        return {}

    result = await db.execute(
        select(InventoryBalance).where(
            InventoryBalance.tenant_id == tenant_id,
            or_(*[
                and_(InventoryBalance.site_id == site_id, InventoryBalance.item_id == item_id)
                for site_id, item_id in keys
            ])
        )
    )
    return {(balance.site_id, balance.item_id): balance for balance in result.scalars().all()}


async def get_balance(db: AsyncSession, tenant_id: str, site_id: str, item_id: str) -> Optional[InventoryBalance]:
    balances = await get_balances(db, tenant_id, [(site_id, item_id)])
    return balances.get((site_id, item_id))


async def list_balances(
    db: AsyncSession,
    tenant_id: str,
    site_id: Optional[str] = None,
    item_id: Optional[str] = None
) -> List[InventoryBalance]:
    query = select(InventoryBalance).where(InventoryBalance.tenant_id == tenant_id)
    if site_id:
        query = query.where(InventoryBalance.site_id == site_id)
    if item_id:
        query = query.where(InventoryBalance.item_id == item_id)
    query = query.order_by(InventoryBalance.site_id, InventoryBalance.item_id)

    result = await db.execute(query)
    return list(result.scalars().all())


async def list_movements(
    db: AsyncSession,
    tenant_id: str,
    site_id: Optional[str] = None,
    item_id: Optional[str] = None,
    event_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0
) -> List[InventoryMovement]:
    """Movements in the order they were recorded."""
    query = select(InventoryMovement).where(InventoryMovement.tenant_id == tenant_id)
    if site_id:
        query = query.where(InventoryMovement.site_id == site_id)
    if item_id:
        query = query.where(InventoryMovement.item_id == item_id)
    if event_id:
        query = query.where(InventoryMovement.event_id == event_id)
    query = query.order_by(InventoryMovement.id.asc()).offset(offset).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_movements_by_ids(db: AsyncSession, tenant_id: str, movement_ids: Iterable[int]) -> List[InventoryMovement]:
    movement_ids = list(movement_ids)
    if not movement_ids:
        return []

    result = await db.execute(
        select(InventoryMovement).where(
            InventoryMovement.tenant_id == tenant_id,
            InventoryMovement.id.in_(movement_ids)
        ).order_by(InventoryMovement.id.asc())
    )
    return list(result.scalars().all())
