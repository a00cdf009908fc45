"""
auth/transports.py -- Outbound SMS and mail delivery.

Delivery itself is outside the auth core; these are the narrow interfaces the
core consumes plus the concrete transports the service ships with:

  SmsTransport.send(phone_number, message) -> delivery id
  Mailer.send(to, subject, body) -> None

EskizSms talks to the Eskiz.uz HTTP API. Its bearer token is cached for 30
days, matching the lifetime Eskiz grants. LogOnlySms and LogMailer write the
message to the log instead -- used when SMS_ENABLED=false and for mail until a
real mail relay is wired in.

Every transport failure surfaces as DeliveryError. The OTP verifier decides
whether that is terminal (production) or degrades to log-only (debug).
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Protocol

import requests

logger = logging.getLogger("marketauth.transports")


class DeliveryError(Exception):
    """Raised when an outbound message could not be handed to the provider."""


class SmsTransport(Protocol):
    def send(self, phone_number: str, message: str) -> str: ...


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class LogOnlySms:
    """Writes the message to the log instead of sending it."""

    def send(self, phone_number: str, message: str) -> str:
        delivery_id = f"log-{secrets.token_hex(6)}"
        logger.info("SMS (log-only) to %s: %s [%s]", phone_number, message, delivery_id)
        return delivery_id


class EskizSms:
    """SMS transport for the Eskiz.uz gateway."""

    _TOKEN_LIFETIME = timedelta(days=30)

    def __init__(self, base_url: str, email: str, password: str, sender: str, timeout: float = 10) -> None:
        self._base_url = base_url.rstrip("/")
        self._email = email
        self._password = password
        self._sender = sender
        self._timeout = timeout
        self._token: str | None = None
        self._token_expiry: datetime | None = None
        # Shared session for connection pooling; the gateway never redirects.
        self._session = requests.Session()
        self._session.max_redirects = 3

    def _auth_token(self) -> str:
        now = datetime.now(timezone.utc)
        if self._token and self._token_expiry and now < self._token_expiry:
            return self._token
        if not self._email or not self._password:
            raise DeliveryError("SMS gateway credentials are not configured")
        try:
            resp = self._session.post(
                f"{self._base_url}/auth/login",
                data={"email": self._email, "password": self._password},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            token = resp.json().get("data", {}).get("token")
        except (requests.RequestException, ValueError) as exc:
            raise DeliveryError(f"SMS gateway authentication failed: {exc}") from exc
        if not token:
            raise DeliveryError("SMS gateway returned no auth token")
        self._token = token
        self._token_expiry = now + self._TOKEN_LIFETIME
        logger.info("SMS gateway token obtained")
        return token

    def send(self, phone_number: str, message: str) -> str:
        token = self._auth_token()
        try:
            resp = self._session.post(
                f"{self._base_url}/message/sms/send",
                data={"mobile_phone": phone_number.lstrip("+"), "message": message, "from": self._sender},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
            if resp.status_code == 401:
                # Token revoked server-side; the next send re-authenticates.
                self._token = None
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise DeliveryError(f"SMS dispatch to {phone_number} failed: {exc}") from exc
        return str(payload.get("id") or payload.get("data", {}).get("id", ""))


class LogMailer:
    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Mail (log-only) to %s: %s\n%s", to, subject, body)
