"""
Enumerations shared by the posting engine models.
"""

import enum


class UserRole(str, enum.Enum):
    """
    Caller role enumeration (read from the JWT role claim).

    Roles:
        OWNER: Tenant owner
        ADMIN: Tenant administrator
        MANAGER: May reverse postings and resubmit failed events
        MEMBER: May create and process events (default role)
    """
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"


class EventStatus(str, enum.Enum):
    """Business event lifecycle status."""
    PENDING = "PENDING"  # Created by a workflow action, waiting for the engine
    PROCESSING = "PROCESSING"  # Claimed by a worker holding a lease
    POSTED = "POSTED"  # Ledger and inventory effects committed
    FAILED = "FAILED"  # Posting aborted, retryable by resubmission
    REVERSED = "REVERSED"  # Effects compensated by a reversal event


class MovementType(str, enum.Enum):
    """Inventory movement type enumeration."""
    RECEIPT = "RECEIPT"  # Goods received against a PO
    REVERSAL = "REVERSAL"  # Compensating movement for a reversed event


class LedgerTransactionStatus(str, enum.Enum):
    """Ledger transaction status enumeration."""
    POSTED = "POSTED"
