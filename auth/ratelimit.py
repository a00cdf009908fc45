"""
auth/ratelimit.py -- Windowed request limiter guarding the auth endpoints.

check(key) -> RateDecision(allowed, retry_after)

The first request for a key opens a window of `window` seconds; each further
request inside the window counts; once the count reaches `limit` every request
is rejected with the seconds left until the window resets.

Counters live in a `limits` storage chosen by URI (RATE_LIMIT_STORAGE_URI):
"memory://" for a single process, "redis://host:6379" when several instances
must share one budget. Memory storage increments under a per-key lock and
drops expired windows on its own, so concurrent requests for one key never
lose updates.

The limiter is advisory defense-in-depth. If the counter backend itself fails
the request is allowed and the failure logged -- the only error callers ever
see from here is the designed "too many requests" decision.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

logger = logging.getLogger("marketauth.ratelimit")

ANONYMOUS = "anonymous"
_NAMESPACE = "marketauth"


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: int = 0


def rate_key(address: str | None, caller_id: int | str | None, method: str, route: str) -> str:
    """Compose the limiter key: caller address + caller id (or anonymous) + method and route template.

    One caller's anonymous and authenticated traffic count separately, and
    every endpoint keeps its own budget.
    """
    who = str(caller_id) if caller_id is not None else ANONYMOUS
    return f"{address or 'unknown'}:{who}:{method.upper()}:{route}"


class RateLimiter:
    def __init__(self, storage_uri: str = "memory://", limit: int = 100, window: int = 15 * 60) -> None:
        self._storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._default = RateLimitItemPerSecond(limit, window, namespace=_NAMESPACE)

    def _item(self, limit: int | None, window: int | None) -> RateLimitItemPerSecond:
        if limit is None and window is None:
            return self._default
        return RateLimitItemPerSecond(
            limit if limit is not None else self._default.amount,
            window if window is not None else self._default.multiples,
            namespace=_NAMESPACE,
        )

    def check(self, key: str, limit: int | None = None, window: int | None = None) -> RateDecision:
        item = self._item(limit, window)
        try:
            if self._strategy.hit(item, key):
                return RateDecision(allowed=True)
            reset_time = self._strategy.get_window_stats(item, key).reset_time
        except Exception:
            logger.exception("Rate-limit backend failure for %s; allowing request", key)
            return RateDecision(allowed=True)
        retry_after = min(item.get_expiry(), max(1, math.ceil(reset_time - time.time())))
        logger.warning("Rate limit exceeded for %s (retry in %ds)", key, retry_after)
        return RateDecision(allowed=False, retry_after=retry_after)

    def reset(self) -> None:
        """Drop every counter. Used by tests and admin tooling."""
        self._storage.reset()
