"""
tests/test_rate_limiter.py -- Unit tests for auth.ratelimit.

Covers:
  - limit=2, window=60s: the third call for a key is rejected with 1 <= retry_after <= 60
  - keys are independent (one endpoint's budget does not bleed into another's)
  - per-call limit overrides the default
  - backend failures fail open instead of raising
  - rate_key() composition (anonymous vs authenticated, route template)
"""

from __future__ import annotations

from unittest.mock import patch

from auth.ratelimit import ANONYMOUS, RateLimiter, rate_key


def test_third_call_in_window_is_rejected():
    limiter = RateLimiter("memory://", limit=2, window=60)
    assert limiter.check("k").allowed
    assert limiter.check("k").allowed
    decision = limiter.check("k")
    assert not decision.allowed
    assert 1 <= decision.retry_after <= 60


def test_keys_are_isolated():
    limiter = RateLimiter("memory://", limit=1, window=60)
    assert limiter.check("1.2.3.4:anonymous:POST:/auth/otp/send").allowed
    assert not limiter.check("1.2.3.4:anonymous:POST:/auth/otp/send").allowed
    assert limiter.check("1.2.3.4:anonymous:POST:/auth/phone/login").allowed
    assert limiter.check("1.2.3.4:participant-7:POST:/auth/otp/send").allowed


def test_per_call_limit_overrides_default():
    limiter = RateLimiter("memory://", limit=100, window=60)
    assert limiter.check("tight", limit=1).allowed
    assert not limiter.check("tight", limit=1).allowed
    # The default budget for another key is untouched.
    assert limiter.check("loose").allowed


def test_reset_clears_counters():
    limiter = RateLimiter("memory://", limit=1, window=60)
    limiter.check("k")
    assert not limiter.check("k").allowed
    limiter.reset()
    assert limiter.check("k").allowed


def test_backend_failure_fails_open():
    limiter = RateLimiter("memory://", limit=1, window=60)
    with patch.object(limiter._strategy, "hit", side_effect=ConnectionError("redis down")):
        decision = limiter.check("k")
    assert decision.allowed


def test_rate_key_anonymous_and_authenticated():
    assert rate_key("10.0.0.1", None, "post", "/api/v1/auth/refresh") == f"10.0.0.1:{ANONYMOUS}:POST:/api/v1/auth/refresh"
    assert rate_key("10.0.0.1", "participant-3", "GET", "/api/v1/auth/me") == "10.0.0.1:participant-3:GET:/api/v1/auth/me"


def test_rate_key_without_address():
    assert rate_key(None, None, "GET", "/x").startswith("unknown:")
