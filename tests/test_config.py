"""
tests/test_config.py -- Signing-key policy enforced by Settings.

Covers:
  - production mode refuses to start without signing keys
  - debug mode generates distinct keys
  - short keys and identical access/refresh keys are rejected
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

ACCESS_KEY = "a" * 40
REFRESH_KEY = "b" * 40


def test_production_requires_keys():
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="", refresh_secret_key="")


def test_debug_generates_distinct_keys():
    settings = Settings(debug=True, secret_key="", refresh_secret_key="")
    assert len(settings.secret_key) >= 32
    assert len(settings.refresh_secret_key) >= 32
    assert settings.secret_key != settings.refresh_secret_key


def test_short_key_rejected():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=True, secret_key="short", refresh_secret_key=REFRESH_KEY)


def test_identical_keys_rejected():
    with pytest.raises(ValidationError, match="must be different"):
        Settings(debug=False, secret_key=ACCESS_KEY, refresh_secret_key=ACCESS_KEY)


def test_explicit_keys_accepted():
    settings = Settings(debug=False, secret_key=ACCESS_KEY, refresh_secret_key=REFRESH_KEY)
    assert settings.secret_key == ACCESS_KEY
    assert settings.otp_max_attempts == 3
    assert settings.otp_resend_seconds == 60
    assert settings.otp_ttl_seconds == 300
