"""
auth/widget.py -- Signed-widget (Telegram Login Widget) assertion verifier.

The widget hands the browser a profile plus a signature; we verify it locally
with no round trip to the provider:

  secret   = SHA256(bot_token)
  checkstr = "\\n".join(f"{k}={v}" for k, v in sorted(fields) if k != "hash")
  expected = HMAC-SHA256(secret, checkstr).hexdigest()

Freshness is a separate, mandatory check: a perfectly signed assertion older
than WIDGET_MAX_AGE_SECONDS is still rejected. Signature is checked first so
that an attacker cannot learn anything about freshness rules from forged data.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any

from auth.errors import Expired, InvalidSignature, ValidationError
from core.clock import Clock, utc_now

logger = logging.getLogger("marketauth.widget")

SIGNATURE_FIELD = "hash"


@dataclass(frozen=True)
class WidgetProfile:
    provider_id: str
    first_name: str
    last_name: str
    username: str | None
    photo_url: str | None
    auth_date: int

    @property
    def synthetic_email(self) -> str | None:
        """The widget exposes no email; username@telegram stands in for one."""
        return f"{self.username}@telegram" if self.username else None


def data_check_string(fields: dict[str, Any]) -> str:
    """Canonical newline-joined key=value string over every field but the signature."""
    return "\n".join(f"{key}={fields[key]}" for key in sorted(fields) if key != SIGNATURE_FIELD)


def sign_fields(fields: dict[str, Any], bot_token: str) -> str:
    secret = hashlib.sha256(bot_token.encode("utf-8")).digest()
    return hmac.new(secret, data_check_string(fields).encode("utf-8"), hashlib.sha256).hexdigest()


class WidgetVerifier:
    def __init__(self, bot_token: str, max_age_seconds: int, clock: Clock = utc_now) -> None:
        self._bot_token = bot_token
        self._max_age = max_age_seconds
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token)

    def verify(self, fields: dict[str, Any]) -> WidgetProfile:
        """Return the profile carried by a genuine, fresh assertion.

        fields is the assertion exactly as the widget produced it, absent
        optional fields omitted (None values are dropped before signing).
        """
        fields = {k: v for k, v in fields.items() if v is not None}
        supplied = str(fields.get(SIGNATURE_FIELD, ""))
        if "id" not in fields or "auth_date" not in fields:
            raise ValidationError("Widget assertion must include id and auth_date.")

        expected = sign_fields(fields, self._bot_token)
        if not hmac.compare_digest(expected, supplied):
            raise InvalidSignature(f"Widget signature mismatch for id={fields['id']}")

        try:
            auth_date = int(fields["auth_date"])
        except (TypeError, ValueError) as exc:
            raise ValidationError("auth_date must be a unix timestamp.") from exc
        age = int(self._clock().timestamp()) - auth_date
        if age > self._max_age:
            raise Expired(f"Widget assertion for id={fields['id']} is {age}s old")

        return WidgetProfile(
            provider_id=str(fields["id"]),
            first_name=str(fields.get("first_name", "")),
            last_name=str(fields.get("last_name", "")),
            username=fields.get("username"),
            photo_url=fields.get("photo_url"),
            auth_date=auth_date,
        )
