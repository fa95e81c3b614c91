"""
P2P business event types.

Only three types move money or stock; the rest are acknowledged so the
event log is a complete audit trail of every P2P action.
"""

import enum

REVERSAL_SUFFIX = "_REVERSAL"


class EventType(str, enum.Enum):
    """P2P workflow event type enumeration."""
    # Requisition events
    REQUISITION_CREATED = "REQUISITION_CREATED"
    REQUISITION_SUBMITTED = "REQUISITION_SUBMITTED"
    REQUISITION_APPROVED = "REQUISITION_APPROVED"
    REQUISITION_REJECTED = "REQUISITION_REJECTED"

    # PO events
    PO_CREATED = "PO_CREATED"
    PO_SENT = "PO_SENT"
    PO_CANCELLED = "PO_CANCELLED"

    # Receipt events (post to ledger and inventory)
    RECEIPT_POSTED = "RECEIPT_POSTED"

    # Bill events
    BILL_CREATED = "BILL_CREATED"
    BILL_APPROVED = "BILL_APPROVED"
    BILL_VARIANCE_POSTED = "BILL_VARIANCE_POSTED"  # Posts to ledger
    BILL_VOIDED = "BILL_VOIDED"

    # Payment events
    PAYMENT_CREATED = "PAYMENT_CREATED"
    PAYMENT_SENT = "PAYMENT_SENT"  # Posts to ledger
    PAYMENT_CLEARED = "PAYMENT_CLEARED"
    PAYMENT_VOIDED = "PAYMENT_VOIDED"


def reversal_type_for(event_type: str) -> str:
    """Type string carried by the reversal of an event of `event_type`."""
    return f"{event_type}{REVERSAL_SUFFIX}"


def is_reversal_type(event_type: str) -> bool:
    return event_type.endswith(REVERSAL_SUFFIX)
