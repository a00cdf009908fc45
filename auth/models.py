"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Provider(str, Enum):
    OTP_PHONE = "otp-phone"
    OAUTH_PROFILE = "oauth-profile"
    SIGNED_WIDGET = "signed-widget"
    PASSWORD = "password"


class OtpPurpose(str, Enum):
    REGISTRATION = "registration"
    LOGIN = "login"
    PASSWORD_RESET = "password-reset"
    PHONE_VERIFICATION = "phone-verification"


class Audience(str, Enum):
    """Who a token was issued to. Participant and operator tokens never mix."""

    PARTICIPANT = "participant"
    OPERATOR = "operator"


@dataclass
class User:
    """Canonical marketplace participant.

    email and phone_number are each unique when present. The refresh-token
    hash is not stored here -- it lives on the user's primary ProviderLink.
    """

    id: int | None = None
    email: str | None = None
    phone_number: str | None = None
    first_name: str = ""
    last_name: str = ""
    photo_url: str | None = None
    role: str = "customer"
    is_active: bool = True
    is_verified: bool = False
    created_at: str | None = None


@dataclass
class ProviderLink:
    """One external identity attached to a User.

    provider_id is None for password links. (provider, provider_id) is unique;
    at most one link per user has is_primary set, and that link holds the
    user's current refresh-token hash.
    """

    user_id: int
    provider: str
    provider_id: str | None = None
    is_primary: bool = False
    id: int | None = None
    hashed_refresh_token: str | None = None
    created_at: str | None = None


@dataclass
class OtpChallenge:
    """A single verification window for (phone_number, purpose)."""

    phone_number: str
    purpose: str
    code: str
    created_at: str
    expires_at: str
    attempts: int = 0
    is_verified: bool = False
    id: int | None = None


@dataclass
class Admin:
    """Operator account. Never unified with participant Users.

    activation_link is None once the account has been activated -- the link
    is retired on first use. is_creator marks the super-admin.
    """

    email: str
    hashed_password: str
    role: str = "admin"
    id: int | None = None
    activation_link: str | None = None
    is_active: bool = False
    is_creator: bool = False
    hashed_refresh_token: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class TokenSubject:
    """Everything the token service needs to mint a pair for one subject."""

    id: int
    audience: Audience
    role: str
    provider: str
    is_verified: bool = False


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password


@dataclass(frozen=True)
class Principal:
    """Decoded, verified access-token claims handed to route handlers."""

    subject_id: int
    audience: Audience
    role: str
    provider: str
    is_verified: bool = False
