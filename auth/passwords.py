"""
auth/passwords.py -- Password hashing and the operator password verifier.

Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
brute-forcing low-entropy secrets expensive.

Timing equalization [C1]: PasswordVerifier always runs bcrypt, against a dummy
hash when the email is unknown, so response time does not reveal whether an
operator account exists.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.admin_store import AdminStore
from auth.errors import InactiveAccount, InvalidPassword
from auth.models import Admin

logger = logging.getLogger("marketauth.passwords")


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes. The API layer caps passwords at
    72 characters of ASCII-range input, which keeps inputs under the limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long input.
        return False


class PasswordVerifier:
    def __init__(self, store: AdminStore, rounds: int = 12) -> None:
        self._store = store
        # Computed once so the first failed login is not measurably slower.
        self._dummy_hash = hash_password("marketauth_timing_dummy", rounds)

    def authenticate(self, email: str, password: str) -> Admin:
        """Return the active Admin for (email, password) or raise.

        Unknown email and wrong password raise the same InvalidPassword; an
        inactive (not yet activated) account raises InactiveAccount only after
        the password has been proven, so it leaks nothing to a guesser.
        """
        admin = self._store.get_by_email(email)
        if admin is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            verify_password(password, self._dummy_hash)
            raise InvalidPassword(f"Unknown operator {email}")
        if not verify_password(password, admin.hashed_password):
            raise InvalidPassword(f"Wrong password for operator {admin.id}")
        if not admin.is_active:
            raise InactiveAccount(f"Operator {admin.id} is not activated")
        return admin
