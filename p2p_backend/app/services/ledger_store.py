"""
Ledger Store service.

Writes immutable ledger transactions with their entries and answers the
read queries over them (transaction lookup, trial balance).
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from p2p_backend.app.core.exceptions import ResourceNotFoundError
from p2p_backend.app.domain.posting.rules import PostingEntry
from p2p_backend.app.models.enums import LedgerTransactionStatus
from p2p_backend.app.models.ledger_entry import LedgerEntry
from p2p_backend.app.models.ledger_transaction import LedgerTransaction


async def write_transaction(
    db: AsyncSession,
    tenant_id: str,
    event_id: int,
    event_type: str,
    idempotency_key: str,
    entries: Sequence[PostingEntry],
    total_amount: float,
    site_id: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    reverses_transaction_id: Optional[int] = None,
    reverses_entry_ids: Optional[Sequence[int]] = None,
) -> LedgerTransaction:
    """
    Persist a transaction header and its entries.

    Entries are numbered from 1 in the order given. The header is flushed
    first so entries can reference its id.

    Args:
        total_amount: Total debits of the transaction
        reverses_entry_ids: For a reversal, the original entry id of each line
            (same order as `entries`)
    """
    transaction = LedgerTransaction(
        tenant_id=tenant_id,
        event_id=event_id,
        event_type=event_type,
        site_id=site_id,
        occurred_at=occurred_at,
        idempotency_key=idempotency_key,
        total_amount=total_amount,
        entries_count=len(entries),
        status=LedgerTransactionStatus.POSTED,
        reverses_transaction_id=reverses_transaction_id,
    )
    db.add(transaction)
    await db.flush()  # To get transaction.id

    for index, entry in enumerate(entries):
        db.add(LedgerEntry(
            tenant_id=tenant_id,
            transaction_id=transaction.id,
            event_id=event_id,
            line_number=index + 1,
            account_id=entry.account_id,
            debit=entry.debit,
            credit=entry.credit,
            memo=entry.memo,
            vendor_id=entry.vendor_id,
            bill_ids=entry.bill_ids,
            reverses_entry_id=reverses_entry_ids[index] if reverses_entry_ids else None,
        ))
    await db.flush()

    return transaction


async def get_transaction(db: AsyncSession, tenant_id: str, transaction_id: int) -> LedgerTransaction:
    """
    Raises:
        ResourceNotFoundError: if the tenant has no such transaction
    """
    result = await db.execute(
        select(LedgerTransaction).where(
            LedgerTransaction.tenant_id == tenant_id,
            LedgerTransaction.id == transaction_id
        )
    )
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise ResourceNotFoundError("Ledger transaction", transaction_id)
    return transaction


async def get_transaction_for_event(db: AsyncSession, tenant_id: str, event_id: int) -> Optional[LedgerTransaction]:
    result = await db.execute(
        select(LedgerTransaction).where(
            LedgerTransaction.tenant_id == tenant_id,
            LedgerTransaction.event_id == event_id
        ).order_by(LedgerTransaction.id.asc()).limit(1)
    )
    return result.scalar_one_or_none()


async def get_entries_for_transaction(db: AsyncSession, tenant_id: str, transaction_id: int) -> List[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry).where(
            LedgerEntry.tenant_id == tenant_id,
            LedgerEntry.transaction_id == transaction_id
        ).order_by(LedgerEntry.line_number.asc())
    )
    return list(result.scalars().all())


async def list_transactions(
    db: AsyncSession,
    tenant_id: str,
    event_id: Optional[int] = None,
    limit: int = 50,
    offset: int = 0
) -> List[LedgerTransaction]:
    """Tenant's ledger transactions, newest first."""
    query = select(LedgerTransaction).where(LedgerTransaction.tenant_id == tenant_id)
    if event_id:
        query = query.where(LedgerTransaction.event_id == event_id)
    query = query.order_by(LedgerTransaction.id.desc()).offset(offset).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def account_balances(db: AsyncSession, tenant_id: str) -> List[Dict[str, float]]:
    """
    Trial balance: summed debits and credits per account.

    Returns:
        [{"account_id", "total_debits", "total_credits", "balance"}] sorted by account,
        where balance = debits - credits
    """
    result = await db.execute(
        select(
            LedgerEntry.account_id,
            func.sum(LedgerEntry.debit),
            func.sum(LedgerEntry.credit),
        ).where(
            LedgerEntry.tenant_id == tenant_id
        ).group_by(LedgerEntry.account_id).order_by(LedgerEntry.account_id)
    )

    balances = []
    for account_id, total_debits, total_credits in result.all():
        total_debits = round(total_debits or 0.0, 2)
        total_credits = round(total_credits or 0.0, 2)
        balances.append({
            "account_id": account_id,
            "total_debits": total_debits,
            "total_credits": total_credits,
            "balance": round(total_debits - total_credits, 2),
        })
    return balances
