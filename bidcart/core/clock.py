"""
Authoritative time source

All auction-window decisions read "now" from a Clock so that the scheduler,
the ledger and the projections agree on time. Stored times are naive UTC.
"""
from datetime import datetime, timezone


def to_utc_naive(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC (the storage format)"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Clock:
    """Source of the current time"""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock in naive UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


system_clock = SystemClock()
