"""
Ledger Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional
from p2p_backend.app.models.enums import LedgerTransactionStatus


class LedgerEntryResponse(BaseModel):
    id: int
    line_number: int
    account_id: str
    debit: float
    credit: float
    memo: Optional[str]
    vendor_id: Optional[str]
    bill_ids: Optional[List[str]]
    reverses_entry_id: Optional[int]

    class Config:
        from_attributes = True


class LedgerTransactionResponse(BaseModel):
    """Schema for displaying a ledger transaction header."""
    id: int
    event_id: int
    event_type: str
    site_id: Optional[str]
    occurred_at: Optional[datetime]
    idempotency_key: str
    total_amount: float
    entries_count: int
    status: LedgerTransactionStatus
    reverses_transaction_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerTransactionDetailResponse(LedgerTransactionResponse):
    entries: List[LedgerEntryResponse]


class AccountBalanceResponse(BaseModel):
    """One row of the trial balance."""
    account_id: str
    total_debits: float
    total_credits: float
    balance: float
