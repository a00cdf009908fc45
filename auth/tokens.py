"""
auth/tokens.py -- Access/refresh token issuance, verification and rotation.

Security design decisions:
  JWT: python-jose with HS256. Access tokens are signed with SECRET_KEY,
       refresh tokens with REFRESH_SECRET_KEY, and each carries a "typ" claim,
       so neither kind is ever accepted where the other is expected. Claims:
       sub, aud (participant|operator), role, provider, verified, typ, iat,
       exp and a random jti (two pairs minted in the same second still differ).

  Refresh storage: only a salted one-way hash of the current refresh token is
       kept -- on the primary ProviderLink for participants, on the Admin row
       for operators. bcrypt reads just 72 bytes and every JWT for the same
       subject shares a long common prefix, so the token is SHA-256'd first
       and the hex digest is what bcrypt hashes.

  Rotation: refresh() verifies the token, compares it to the stored hash, and
       swaps in the new hash with a conditional UPDATE keyed on the hash it
       just compared against. A leaked refresh token works at most once: the
       second use -- sequential or concurrent -- fails AccessDenied.

  Failure classes: malformed/expired/wrong-type tokens raise Unauthorized;
       a genuine token that was revoked or rotated away raises AccessDenied.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Protocol

import bcrypt
from jose import JWTError, jwt

from auth.errors import AccessDenied, InternalError, Unauthorized
from auth.models import Audience, Principal, TokenPair, TokenSubject
from core.clock import Clock, utc_now
from core.config import Settings

logger = logging.getLogger("marketauth.tokens")

_ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


class RefreshHashHolder(Protocol):
    """Storage for one audience's refresh-token hashes (one per subject)."""

    def get_refresh_hash(self, subject_id: int) -> str | None: ...

    def set_refresh_hash(self, subject_id: int, hashed: str | None) -> bool: ...

    def swap_refresh_hash(self, subject_id: int, expected: str, hashed: str) -> bool: ...

    def load_subject(self, subject_id: int, provider: str) -> TokenSubject | None: ...


def _prehash(token: str) -> bytes:
    return hashlib.sha256(token.encode("utf-8")).hexdigest().encode("ascii")


def hash_refresh_token(token: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_prehash(token), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def refresh_token_matches(token: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_prehash(token), hashed.encode("utf-8"))
    except ValueError:
        return False


class TokenService:
    """Issues, verifies, rotates and revokes token pairs for both audiences."""

    def __init__(
        self,
        settings: Settings,
        holders: dict[Audience, RefreshHashHolder],
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings
        self._holders = holders
        self._clock = clock

    # ------------------------------------------------------------------
    # Encode / decode
    # ------------------------------------------------------------------

    def _secret(self, typ: str) -> str:
        return self._settings.secret_key if typ == ACCESS else self._settings.refresh_secret_key

    def _encode(self, subject: TokenSubject, typ: str, lifetime: int) -> str:
        now = self._clock()
        payload = {
            "sub": str(subject.id),
            "aud": subject.audience.value,
            "role": subject.role,
            "provider": subject.provider,
            "verified": subject.is_verified,
            "typ": typ,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=lifetime)).timestamp()),
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._secret(typ), algorithm=_ALGORITHM)

    def _decode(self, token: str, typ: str, audience: Audience) -> dict:
        try:
            claims = jwt.decode(
                token,
                self._secret(typ),
                algorithms=[_ALGORITHM],
                audience=audience.value,
                options={"leeway": 0},
            )
        except JWTError as exc:
            raise Unauthorized(f"Invalid {typ} token: {exc}") from exc
        if claims.get("typ") != typ or "sub" not in claims or "role" not in claims:
            raise Unauthorized(f"Token is not a {typ} token")
        try:
            claims["sub"] = int(claims["sub"])
        except (TypeError, ValueError) as exc:
            raise Unauthorized("Token subject is malformed") from exc
        return claims

    def verify_access(self, token: str, audience: Audience) -> Principal:
        """Decode a bearer access token for the expected audience."""
        claims = self._decode(token, ACCESS, audience)
        return Principal(
            subject_id=claims["sub"],
            audience=audience,
            role=claims["role"],
            provider=claims.get("provider", ""),
            is_verified=bool(claims.get("verified", False)),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _mint(self, subject: TokenSubject) -> TokenPair:
        cfg = self._settings
        return TokenPair(
            access_token=self._encode(subject, ACCESS, cfg.access_token_expire_seconds),
            refresh_token=self._encode(subject, REFRESH, cfg.refresh_token_expire_seconds),
            expires_in=cfg.access_token_expire_seconds,
            refresh_expires_in=cfg.refresh_token_expire_seconds,
        )

    def issue(self, subject: TokenSubject) -> TokenPair:
        """Mint a fresh pair and make its refresh token the only valid one."""
        pair = self._mint(subject)
        hashed = hash_refresh_token(pair.refresh_token, self._settings.bcrypt_rounds)
        if not self._holders[subject.audience].set_refresh_hash(subject.id, hashed):
            raise InternalError(f"No refresh-token holder for {subject.audience.value} {subject.id}")
        logger.info("Issued token pair for %s %s via %s", subject.audience.value, subject.id, subject.provider)
        return pair

    def refresh(self, refresh_token: str, audience: Audience) -> TokenPair:
        """Exchange a refresh token for a new pair. Single use."""
        claims = self._decode(refresh_token, REFRESH, audience)
        subject_id = claims["sub"]
        holder = self._holders[audience]

        stored = holder.get_refresh_hash(subject_id)
        if not stored:
            logger.warning("Refresh for %s %s with no stored hash (revoked)", audience.value, subject_id)
            raise AccessDenied()
        if not refresh_token_matches(refresh_token, stored):
            logger.warning("Refresh for %s %s with superseded token", audience.value, subject_id)
            raise AccessDenied()

        subject = holder.load_subject(subject_id, claims.get("provider", ""))
        if subject is None:
            logger.warning("Refresh for inactive or missing %s %s", audience.value, subject_id)
            raise AccessDenied()

        pair = self._mint(subject)
        hashed = hash_refresh_token(pair.refresh_token, self._settings.bcrypt_rounds)
        if not holder.swap_refresh_hash(subject_id, stored, hashed):
            logger.warning("Concurrent refresh lost the rotation race for %s %s", audience.value, subject_id)
            raise AccessDenied()
        logger.info("Rotated refresh token for %s %s", audience.value, subject_id)
        return pair

    def revoke(self, subject_id: int, audience: Audience) -> None:
        """Forget the stored refresh hash. Idempotent."""
        self._holders[audience].set_refresh_hash(subject_id, None)
        logger.info("Revoked refresh token for %s %s", audience.value, subject_id)
