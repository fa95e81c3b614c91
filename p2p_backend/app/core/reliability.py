"""
Reliability utilities for the posting engine.

Runs a unit of work inside one atomic transaction and retries the whole
unit when the store reports a conflicting concurrent write.
"""

import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from p2p_backend.app.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger("p2p_backend.reliability")

# Unique constraints a concurrent writer can win, with the column list
# SQLite reports in place of the constraint name.
CONFLICT_CONSTRAINTS = {
    "uq_inventory_balances_site_item":
        "inventory_balances.tenant_id, inventory_balances.site_id, inventory_balances.item_id",
    "uq_business_events_idempotency":
        "business_events.tenant_id, business_events.idempotency_key",
    "uq_ledger_transactions_idempotency":
        "ledger_transactions.tenant_id, ledger_transactions.idempotency_key",
}


def is_conflict(exc: Exception) -> bool:
    """
    Whether `exc` means "someone else wrote first".

    True for a version mismatch on an optimistic row, or a duplicate insert
    on one of the unique constraints above. Any other integrity violation
    is a data error and is not retried.
    """
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, IntegrityError):
        message = str(exc.orig)
        return any(
            name in message or columns in message
            for name, columns in CONFLICT_CONSTRAINTS.items()
        )
    return False


async def run_atomic(
    session_factory: async_sessionmaker,
    work: Callable[[AsyncSession], Awaitable[Any]],
    attempts: int = 3,
    label: str = "atomic unit",
) -> Any:
    """
    Execute `work(db)` in a fresh session inside a single transaction.

    Commits when `work` returns, rolls back when it raises. Conflict errors
    cause the whole unit to be re-run from scratch (re-reading every row),
    up to `attempts` times. Any other exception propagates after rollback.

    Raises:
        ConcurrencyConflictError: when every attempt hit a conflict
    """
    last_error = None
    for attempt in range(1, attempts + 1):
        async with session_factory() as db:
            try:
                async with db.begin():
                    return await work(db)
            except (StaleDataError, IntegrityError) as exc:
                if not is_conflict(exc):
                    raise
                last_error = exc
                logger.warning(
                    "Concurrent write detected, retrying",
                    extra={"label": label, "attempt": attempt, "error": str(exc)}
                )

    raise ConcurrencyConflictError(
        message=f"{label} aborted after {attempts} conflicting attempts",
        details={"error": str(last_error)}
    )
