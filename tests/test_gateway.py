"""
tests/test_gateway.py -- Auth Gateway pipeline behaviour not visible over HTTP.

Covers:
  - the limiter runs before any verifier: an exhausted key fails RateExceeded
    even with a wrong code, and the challenge's attempts stay untouched
  - disabled users cannot sign in or refresh
  - widget login fails InternalError when no bot token is configured
  - bootstrap happens exactly once
"""

from __future__ import annotations

import pytest

from auth.errors import InactiveAccount, InternalError, RateExceeded, Unauthorized
from auth.models import OtpPurpose

PHONE = "+998901234567"
KEY = "127.0.0.1:anonymous:POST:/api/v1/auth/phone/login"


def test_limiter_runs_before_verifier(make_gateway, sms):
    gw = make_gateway(rate_limit_default=1)
    gw.otp.send(PHONE, OtpPurpose.LOGIN)
    code = sms.last_code(PHONE)
    gw.limiter.check(KEY)

    with pytest.raises(RateExceeded):
        gw.login_with_phone(KEY, PHONE, "000000" if code != "000000" else "111111")
    assert gw.ledger.latest_open(PHONE, OtpPurpose.LOGIN.value).attempts == 0


def test_disabled_user_cannot_sign_in(gateway, sms, clock):
    gateway.send_otp("k1", PHONE, "login")
    result = gateway.login_with_phone("k2", PHONE, sms.last_code(PHONE))
    gateway.store.set_active(result.user.id, False)

    clock.advance(61)
    gateway.send_otp("k1", PHONE, "login")
    with pytest.raises(InactiveAccount):
        gateway.login_with_phone("k2", PHONE, sms.last_code(PHONE))
    with pytest.raises(Unauthorized):
        gateway.profile("k3", result.user.id)


def test_widget_login_requires_configuration(make_gateway):
    gw = make_gateway(widget_bot_token="")
    with pytest.raises(InternalError):
        gw.widget_login("k", {"id": 1, "auth_date": 1, "hash": "00"})


def test_operator_bootstrap_happens_once(gateway, mailer):
    creator = gateway.admin_sign_up("k", "root@example.com", "root-password")
    assert creator.is_creator is True
    assert gateway.admin_store.has_admins() is True
    with pytest.raises(Unauthorized):
        gateway.admin_sign_up("k", "second@example.com", "second-password")
    assert len(mailer.sent) == 1


def test_admin_email_is_case_insensitive(gateway, mailer):
    gateway.admin_sign_up("k", "Root@Example.com", "root-password")
    gateway.admin_activate("k", mailer.last_link())
    result = gateway.admin_sign_in("k", "ROOT@example.com", "root-password")
    assert result.admin.email == "root@example.com"
