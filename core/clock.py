"""
core/clock.py -- The one place the service asks for the current time.

Components that compare against expiry times accept a ``clock`` callable and
default to utc_now(). Tests pass a FakeClock instead of patching datetime.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize a UTC datetime for storage.

    Fixed microsecond precision keeps stored strings lexicographically ordered,
    so range predicates (expires_at < :now) work directly in SQL.
    """
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)
