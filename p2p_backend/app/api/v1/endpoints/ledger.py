"""
Ledger API Endpoints.

Read-only views of posted ledger transactions and the trial balance.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from p2p_backend.app.db.session import get_db
from p2p_backend.app.schemas.ledger import (
    LedgerTransactionResponse, LedgerTransactionDetailResponse, LedgerEntryResponse, AccountBalanceResponse
)
from p2p_backend.app.core.dependencies import get_current_user
from p2p_backend.app.services import ledger_store

router = APIRouter(prefix="/ledger", tags=["Ledger"])


@router.get("/transactions", response_model=List[LedgerTransactionResponse])
async def list_transactions(
    event_id: Optional[int] = Query(None, description="Only transactions of this event"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await ledger_store.list_transactions(
        db, current_user["tenant_id"], event_id=event_id, limit=limit, offset=offset
    )


@router.get("/transactions/{transaction_id}", response_model=LedgerTransactionDetailResponse)
async def get_transaction(
    transaction_id: int = Path(..., description="Ledger transaction ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Transaction header with its entries in line order."""
    tenant_id = current_user["tenant_id"]
    transaction = await ledger_store.get_transaction(db, tenant_id, transaction_id)
    entries = await ledger_store.get_entries_for_transaction(db, tenant_id, transaction.id)

    header = LedgerTransactionResponse.model_validate(transaction)
    return LedgerTransactionDetailResponse(
        **header.model_dump(),
        entries=[LedgerEntryResponse.model_validate(entry) for entry in entries]
    )


@router.get("/account-balances", response_model=List[AccountBalanceResponse])
async def account_balances(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Trial balance: debits, credits and net balance per account."""
    return await ledger_store.account_balances(db, current_user["tenant_id"])
