"""
auth/errors.py -- Exception taxonomy for the authentication core.

Every failure the core can report is an AuthError subclass carrying the HTTP
status, a machine-readable code and the public message. api/main.py renders
them all through one exception handler, so route code simply lets them
propagate.

Enumeration resistance: every CredentialError subclass shares the public code
"invalid_credentials". The subclass name is what shows up in the logs; the
client only ever learns that the credentials were not accepted.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "auth_error"
    public_message: str = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class ValidationError(AuthError):
    """Malformed input (bad phone format, unknown purpose, ...)."""

    status_code = 422
    code = "validation_error"
    public_message = "Request validation failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)
        # Validation messages describe the caller's own input, so they are safe to echo.
        if message:
            self.public_message = message


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    public_message = "The resource already exists."


class InvalidActivationLink(AuthError):
    code = "invalid_activation_link"
    public_message = "Activation link is invalid or already used."


class RateExceeded(AuthError):
    status_code = 429
    code = "rate_limited"
    public_message = "Too many requests."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))


# ---------------------------------------------------------------------------
# Credential failures -- collapsed to "invalid_credentials" at the wire
# ---------------------------------------------------------------------------


class CredentialError(AuthError):
    status_code = 401
    code = "invalid_credentials"
    public_message = "Invalid credentials."


class NotFound(CredentialError):
    """No open challenge (or account) matched the request."""


class Expired(CredentialError):
    """The challenge or assertion is older than its allowed lifetime."""


class TooManyAttempts(CredentialError):
    """The challenge has used up its wrong-guess budget."""


class InvalidCode(CredentialError):
    """The submitted one-time code did not match."""


class InvalidSignature(CredentialError):
    """A signed assertion failed its HMAC check."""


class UnverifiedIdentity(CredentialError):
    """The OAuth provider did not vouch for the email address."""


class InvalidPassword(CredentialError):
    """Unknown operator email or wrong password."""


class InactiveAccount(CredentialError):
    """The account exists but is disabled or not yet activated."""


class IdentityConflict(CredentialError):
    """The email or phone belongs to an account already linked to another identity of this provider."""


# ---------------------------------------------------------------------------
# Token failures
# ---------------------------------------------------------------------------


class Unauthorized(AuthError):
    """Missing, malformed or expired token."""

    status_code = 401
    code = "unauthorized"
    public_message = "Authentication required."


class AccessDenied(AuthError):
    """A structurally valid refresh token that was revoked or rotated away."""

    status_code = 403
    code = "forbidden"
    public_message = "Access denied. Please sign in again."


class Forbidden(AuthError):
    """Authenticated, but the role lacks the required permissions."""

    status_code = 403
    code = "forbidden"
    public_message = "You do not have permission to perform this action."


class InternalError(AuthError):
    """Storage or transport failure. The only class a caller may retry."""

    status_code = 503
    code = "internal_error"
    public_message = "Service temporarily unavailable. Please retry."
