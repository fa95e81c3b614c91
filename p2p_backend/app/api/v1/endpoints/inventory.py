"""
Inventory API Endpoints.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from p2p_backend.app.db.session import get_db
from p2p_backend.app.schemas.inventory import InventoryBalanceResponse, InventoryMovementResponse
from p2p_backend.app.core.dependencies import get_current_user
from p2p_backend.app.services import inventory_store

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.get("/balances", response_model=List[InventoryBalanceResponse])
async def list_balances(
    site_id: Optional[str] = Query(None),
    item_id: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Quantity on hand and weighted-average cost per (site, item)."""
    return await inventory_store.list_balances(db, current_user["tenant_id"], site_id=site_id, item_id=item_id)


@router.get("/movements", response_model=List[InventoryMovementResponse])
async def list_movements(
    site_id: Optional[str] = Query(None),
    item_id: Optional[str] = Query(None),
    event_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await inventory_store.list_movements(
        db,
        current_user["tenant_id"],
        site_id=site_id,
        item_id=item_id,
        event_id=event_id,
        limit=limit,
        offset=offset
    )
