"""
tests/test_purge.py -- Background sweep of expired OTP challenges.

Covers:
  - one sweep removes expired challenges and leaves live ones
  - a failing sweep is logged and reported as 0 instead of raising
"""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import patch

from api.main import purge_expired_challenges
from auth.models import OtpPurpose

STALE_PHONE = "+998901111111"
LIVE_PHONE = "+998902222222"


def test_sweep_removes_only_expired(gateway, clock):
    clock.advance(-1000)
    gateway.otp.send(STALE_PHONE, OtpPurpose.LOGIN)
    clock.advance(1000)
    gateway.otp.send(LIVE_PHONE, OtpPurpose.LOGIN)

    removed = asyncio.run(purge_expired_challenges(SimpleNamespace(state=SimpleNamespace(gateway=gateway))))

    assert removed == 1
    assert gateway.ledger.last_created(STALE_PHONE, OtpPurpose.LOGIN.value) is None
    assert gateway.ledger.last_created(LIVE_PHONE, OtpPurpose.LOGIN.value) is not None


def test_sweep_failure_is_logged_not_raised(gateway, caplog):
    app = SimpleNamespace(state=SimpleNamespace(gateway=gateway))
    with patch.object(gateway.ledger, "purge_expired", side_effect=RuntimeError("disk gone")):
        with caplog.at_level(logging.ERROR, logger="marketauth"):
            removed = asyncio.run(purge_expired_challenges(app))

    assert removed == 0
    assert "OTP purge failed" in caplog.text
