"""
Posting Rule Set.

Pure functions mapping one typed event payload plus an account mapping to
a list of double-entry lines. No rule touches the database; the engine
persists what they return.
"""

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

from p2p_backend.app.core.exceptions import PostingValidationError, UnbalancedTransactionError
from p2p_backend.app.domain.posting.accounts import AccountMapping
from p2p_backend.app.models.event_types import EventType
from p2p_backend.app.schemas.payloads import (
    BillVariancePostedPayload,
    PaymentSentPayload,
    ReceiptPostedPayload,
)


@dataclass
class PostingEntry:
    """One debit or credit line produced by a rule."""
    account_id: str
    debit: float = 0.0
    credit: float = 0.0
    memo: str = ""
    vendor_id: Optional[str] = None
    bill_ids: Optional[List[str]] = None


def _debit(account_id: str, amount: float, memo: str, **tags) -> Optional[PostingEntry]:
    amount = round(amount, 2)
    if amount == 0:
        return None
    return PostingEntry(account_id=account_id, debit=amount, memo=memo, **tags)


def _credit(account_id: str, amount: float, memo: str, **tags) -> Optional[PostingEntry]:
    amount = round(amount, 2)
    if amount == 0:
        return None
    return PostingEntry(account_id=account_id, credit=amount, memo=memo, **tags)


def _collect(*entries: Optional[PostingEntry]) -> List[PostingEntry]:
    return [entry for entry in entries if entry is not None]


def build_receipt_entries(payload: ReceiptPostedPayload, accounts: AccountMapping) -> List[PostingEntry]:
    """
    RECEIPT_POSTED: goods received increase inventory and create AP.

    Dr. Inventory (one line per inventory account)
    Dr. Shipping Expense (when freight is billed on the receipt)
      Cr. Accounts Payable (goods total + freight)
    """
    if not payload.lines:
        raise PostingValidationError("No lines found in event payload")

    # Group line costs by inventory account, keeping first-seen order
    inventory_by_account: Dict[str, float] = {}
    for line in payload.lines:
        account_id = accounts.inventory_account_for(line.category)
        inventory_by_account[account_id] = inventory_by_account.get(account_id, 0.0) + line.line_total

    debits = [
        _debit(account_id, amount, "Receipt of goods - PO items")
        for account_id, amount in inventory_by_account.items()
    ]
    freight = _debit(accounts.shipping_expense, payload.shipping_cost, "Receipt of goods - freight")
    liability = _credit(
        accounts.accounts_payable,
        payload.goods_total + payload.shipping_cost,
        "Receipt of goods - Vendor liability",
        vendor_id=payload.vendor_id,
    )
    return _collect(*debits, freight, liability)


def build_variance_entries(payload: BillVariancePostedPayload, accounts: AccountMapping) -> List[PostingEntry]:
    """
    BILL_VARIANCE_POSTED: bill total differs from the received total.

    Bill higher (we owe more):  Dr. PPV / Cr. AP
    Bill lower (we owe less):   Dr. AP  / Cr. PPV
    No variance: no lines.
    """
    variance = payload.variance_amount
    if variance > 0:
        return _collect(
            _debit(accounts.purchase_price_variance, variance,
                   "Purchase price variance - bill higher than receipt"),
            _credit(accounts.accounts_payable, variance,
                    "Purchase price variance - additional AP", vendor_id=payload.vendor_id),
        )
    if variance < 0:
        amount = abs(variance)
        return _collect(
            _debit(accounts.accounts_payable, amount,
                   "Purchase price variance - AP reduction", vendor_id=payload.vendor_id),
            _credit(accounts.purchase_price_variance, amount,
                    "Purchase price variance - bill lower than receipt"),
        )
    return []


def build_payment_entries(payload: PaymentSentPayload, accounts: AccountMapping) -> List[PostingEntry]:
    """
    PAYMENT_SENT: paying a vendor reduces AP and cash.

    Dr. Accounts Payable (tagged with the allocated bills)
      Cr. Cash / bank account
    """
    if payload.amount < 0:
        raise PostingValidationError(f"Payment amount must not be negative: {payload.amount}")

    return _collect(
        _debit(
            accounts.accounts_payable,
            payload.amount,
            "Payment to vendor",
            vendor_id=payload.vendor_id,
            bill_ids=[allocation.bill_id for allocation in payload.allocations],
        ),
        _credit(
            payload.bank_account_id or accounts.cash,
            payload.amount,
            "Payment to vendor",
            vendor_id=payload.vendor_id,
        ),
    )


@dataclass(frozen=True)
class PostingRule:
    """Dispatch entry: how to read the payload and which lines it produces."""
    payload_model: Type[BaseModel]
    build_entries: Callable[[BaseModel, AccountMapping], List[PostingEntry]]
    moves_inventory: bool = False


POSTING_RULES: Dict[EventType, PostingRule] = {
    EventType.RECEIPT_POSTED: PostingRule(ReceiptPostedPayload, build_receipt_entries, moves_inventory=True),
    EventType.BILL_VARIANCE_POSTED: PostingRule(BillVariancePostedPayload, build_variance_entries),
    EventType.PAYMENT_SENT: PostingRule(PaymentSentPayload, build_payment_entries),
}

# Acknowledged only: POSTED with no ledger or inventory effects.
NON_POSTING_EVENT_TYPES = frozenset({
    EventType.REQUISITION_CREATED,
    EventType.REQUISITION_SUBMITTED,
    EventType.REQUISITION_APPROVED,
    EventType.REQUISITION_REJECTED,
    EventType.PO_CREATED,
    EventType.PO_SENT,
    EventType.PO_CANCELLED,
    EventType.BILL_CREATED,
    EventType.BILL_APPROVED,
    EventType.BILL_VOIDED,
    EventType.PAYMENT_CREATED,
    EventType.PAYMENT_CLEARED,
    EventType.PAYMENT_VOIDED,
})

_unhandled = set(EventType) - set(POSTING_RULES) - NON_POSTING_EVENT_TYPES
if _unhandled:
    raise RuntimeError(f"Event types without a posting rule: {sorted(t.value for t in _unhandled)}")


def resolve_rule(event_type: str) -> Optional[PostingRule]:
    """
    Posting rule for an event type, or None for acknowledge-only types.

    Raises:
        PostingValidationError: if the type is not a known P2P event type
    """
    try:
        kind = EventType(event_type)
    except ValueError:
        raise PostingValidationError(f"Unknown event type: {event_type}")
    return POSTING_RULES.get(kind)


def summarize(entries: List[PostingEntry]) -> Tuple[float, float]:
    """Total debits and credits, rounded to cents."""
    total_debits = round(sum(entry.debit for entry in entries), 2)
    total_credits = round(sum(entry.credit for entry in entries), 2)
    return total_debits, total_credits


def validate_balance(entries: List[PostingEntry], tolerance: float = 0.01) -> Tuple[float, float]:
    """
    Check the double-entry invariant.

    Raises:
        PostingValidationError: if a total is not a finite number
        UnbalancedTransactionError: if |debits - credits| exceeds the tolerance
    """
    total_debits, total_credits = summarize(entries)
    if not (math.isfinite(total_debits) and math.isfinite(total_credits)):
        raise PostingValidationError(
            f"Entry amounts are not finite: debits={total_debits}, credits={total_credits}"
        )
    # Compare at cent precision
    if round(abs(total_debits - total_credits), 2) > tolerance:
        raise UnbalancedTransactionError(total_debits, total_credits)
    return total_debits, total_credits
