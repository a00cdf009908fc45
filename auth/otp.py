"""
auth/otp.py -- Phone one-time-password verifier.

send(phone, purpose):
  Rejects with RateExceeded while the pair's newest challenge is younger than
  OTP_RESEND_SECONDS. Otherwise opens a fresh challenge (the ledger purges
  expired rows and retires older open ones) and dispatches the code.

verify(phone, code, purpose):
  Checks run in a fixed order so the caller gets the most actionable error:
    1. NotFound         -- no unverified challenge for the pair
    2. Expired          -- past expires_at
    3. TooManyAttempts  -- attempts already at the cap (no further increment)
    4. InvalidCode      -- mismatch; attempts incremented atomically
  On a match the challenge is consumed with a conditional UPDATE.

redeem(phone, code, purpose):
  Used by phone login/registration. Verifies the open challenge, or re-checks
  the code of one verify() already accepted, then deletes the row.

Codes come from secrets.randbelow(), never random. Comparison uses
hmac.compare_digest so the check does not leak a timing signal.

Delivery: with SMS disabled the code is logged instead of sent. When the SMS
transport fails, production raises InternalError; debug mode logs the code
and carries on.
"""

from __future__ import annotations

import hmac
import logging
import math
import secrets
import threading
from dataclasses import dataclass
from datetime import timedelta

from auth.errors import (
    Expired,
    InternalError,
    InvalidCode,
    NotFound,
    RateExceeded,
    TooManyAttempts,
    ValidationError,
)
from auth.models import OtpChallenge, OtpPurpose
from auth.otp_store import OtpLedger
from auth.transports import DeliveryError, SmsTransport
from core.clock import Clock, from_iso, to_iso, utc_now
from core.config import Settings

logger = logging.getLogger("marketauth.otp")


@dataclass(frozen=True)
class OtpDispatch:
    """Returned by send(): where the code went and how long it lives."""

    phone_number: str
    purpose: str
    expires_in: int
    delivery_id: str | None = None


def generate_code(length: int) -> str:
    """Fixed-length numeric code from a CSPRNG, zero-padded."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def parse_purpose(value: str) -> OtpPurpose:
    try:
        return OtpPurpose(value)
    except ValueError as exc:
        allowed = ", ".join(p.value for p in OtpPurpose)
        raise ValidationError(f"Unknown OTP purpose {value!r}. Expected one of: {allowed}.") from exc


class OtpVerifier:
    def __init__(
        self,
        ledger: OtpLedger,
        transport: SmsTransport,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self._ledger = ledger
        self._transport = transport
        self._settings = settings
        self._clock = clock
        # Serializes the resend check with the insert so two concurrent sends
        # for the same pair cannot both pass the 60-second gate in this process.
        self._send_lock = threading.Lock()

    def send(self, phone_number: str, purpose: OtpPurpose) -> OtpDispatch:
        cfg = self._settings
        with self._send_lock:
            now = self._clock()
            last = self._ledger.last_created(phone_number, purpose.value)
            if last is not None:
                elapsed = (now - from_iso(last.created_at)).total_seconds()
                if elapsed < cfg.otp_resend_seconds and now < from_iso(last.expires_at):
                    wait = math.ceil(cfg.otp_resend_seconds - elapsed)
                    logger.warning("OTP resend too soon for %s (%s), %ds left", phone_number, purpose.value, wait)
                    raise RateExceeded(wait, f"Wait {wait} seconds before requesting a new code.")

            code = generate_code(cfg.otp_length)
            challenge = OtpChallenge(
                phone_number=phone_number,
                purpose=purpose.value,
                code=code,
                created_at=to_iso(now),
                expires_at=to_iso(now + timedelta(seconds=cfg.otp_ttl_seconds)),
            )
            self._ledger.open_challenge(challenge, now)

        delivery_id = self._deliver(phone_number, purpose, code)
        logger.info("OTP sent to %s for %s", phone_number, purpose.value)
        return OtpDispatch(
            phone_number=phone_number,
            purpose=purpose.value,
            expires_in=cfg.otp_ttl_seconds,
            delivery_id=delivery_id,
        )

    def _deliver(self, phone_number: str, purpose: OtpPurpose, code: str) -> str | None:
        if not self._settings.sms_enabled:
            logger.info("DEV MODE - OTP for %s (%s): %s", phone_number, purpose.value, code)
            return None
        message = f"Your verification code is: {code}"
        try:
            return self._transport.send(phone_number, message)
        except DeliveryError as exc:
            if self._settings.debug:
                logger.warning("SMS dispatch failed (%s); DEV MODE - OTP for %s: %s", exc, phone_number, code)
                return None
            logger.error("SMS dispatch to %s failed: %s", phone_number, exc)
            raise InternalError("Could not deliver the verification code. Please retry.") from exc

    def verify(self, phone_number: str, code: str, purpose: OtpPurpose) -> OtpChallenge:
        """Consume the open challenge for the pair if code matches it."""
        max_attempts = self._settings.otp_max_attempts
        challenge = self._ledger.latest_open(phone_number, purpose.value)
        if challenge is None:
            raise NotFound(f"No open {purpose.value} challenge for {phone_number}")
        if self._clock() > from_iso(challenge.expires_at):
            raise Expired(f"Challenge {challenge.id} expired")
        if challenge.attempts >= max_attempts:
            raise TooManyAttempts(f"Challenge {challenge.id} exhausted")

        if not hmac.compare_digest(challenge.code.encode(), (code or "").encode()):
            if not self._ledger.record_failed_attempt(challenge.id, max_attempts):
                raise TooManyAttempts(f"Challenge {challenge.id} exhausted")
            raise InvalidCode(f"Wrong code for challenge {challenge.id}")

        if not self._ledger.mark_verified(challenge.id, max_attempts):
            # Consumed or exhausted by a concurrent request between read and write.
            raise NotFound(f"Challenge {challenge.id} no longer open")
        logger.info("OTP verified for %s (%s)", phone_number, purpose.value)
        challenge.is_verified = True
        return challenge

    def redeem(self, phone_number: str, code: str, purpose: OtpPurpose) -> OtpChallenge:
        """Prove possession of code for a sign-in style flow and use the challenge up.

        Accepts the open challenge (verified here) or one already verified
        through verify() with the same code. Either way the row is deleted, so
        one code yields at most one session.
        """
        if self._ledger.latest_open(phone_number, purpose.value) is not None:
            challenge = self.verify(phone_number, code, purpose)
        else:
            challenge = self._ledger.latest_verified(phone_number, purpose.value)
            if challenge is None:
                raise NotFound(f"No {purpose.value} challenge for {phone_number}")
            if self._clock() > from_iso(challenge.expires_at):
                raise Expired(f"Challenge {challenge.id} expired")
            if challenge.attempts >= self._settings.otp_max_attempts:
                raise TooManyAttempts(f"Challenge {challenge.id} exhausted")
            if not hmac.compare_digest(challenge.code.encode(), (code or "").encode()):
                self._ledger.record_failed_attempt(challenge.id, self._settings.otp_max_attempts)
                raise InvalidCode(f"Wrong code for verified challenge {challenge.id}")

        if not self._ledger.redeem(challenge.id):
            raise NotFound(f"Challenge {challenge.id} already redeemed")
        return challenge
