"""
Event lease service.

An advisory lock on a business event: who holds it and until when. A
lease past its expiry is stale and may be reclaimed by another worker.
This is a heuristic, not a strict lease; the POSTED replay check and the
unique ledger idempotency key catch a duplicate run after a reclaim.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from p2p_backend.app.models.business_event import BusinessEvent


def _as_naive_utc(value: datetime) -> datetime:
    """Drivers differ on returning aware or naive timestamps; compare as naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass(frozen=True)
class EventLease:
    """Lease held by one worker on one event."""
    holder: str
    acquired_at: datetime
    expires_at: datetime

    @classmethod
    def grant(cls, holder: str, ttl_seconds: int, now: Optional[datetime] = None) -> "EventLease":
        now = now or datetime.utcnow()
        return cls(holder=holder, acquired_at=now, expires_at=now + timedelta(seconds=ttl_seconds))

    @classmethod
    def from_event(cls, event: BusinessEvent) -> Optional["EventLease"]:
        """Lease currently recorded on the event, if any."""
        if not event.locked_by or not event.locked_at:
            return None
        expires_at = event.lease_expires_at or event.locked_at
        return cls(
            holder=event.locked_by,
            acquired_at=_as_naive_utc(event.locked_at),
            expires_at=_as_naive_utc(expires_at),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = _as_naive_utc(now or datetime.utcnow())
        return now >= self.expires_at

    def is_held_by(self, holder: str) -> bool:
        return self.holder == holder

    def apply_to(self, event: BusinessEvent) -> None:
        """Record this lease on the event row."""
        event.locked_by = self.holder
        event.locked_at = self.acquired_at
        event.lease_expires_at = self.expires_at


def clear_lease(event: BusinessEvent) -> None:
    """Remove any lease from the event row."""
    event.locked_by = None
    event.locked_at = None
    event.lease_expires_at = None


def can_claim(event: BusinessEvent, holder: str, now: Optional[datetime] = None) -> bool:
    """
    Whether `holder` may take a PROCESSING event.

    True when the holder already owns the lease or the recorded lease is
    missing or expired.
    """
    lease = EventLease.from_event(event)
    if lease is None:
        return True
    return lease.is_held_by(holder) or lease.is_expired(now)
