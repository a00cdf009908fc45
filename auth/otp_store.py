"""
auth/otp_store.py -- OTP ledger: persistent one-time-password challenges.

Every mutation that guards a limit is a conditional UPDATE evaluated by the
database, not a read-modify-write in Python:

  record_failed_attempt():  attempts = attempts + 1 WHERE attempts < max
  mark_verified():          is_verified = 1 WHERE is_verified = 0 AND attempts < max
  redeem():                 DELETE WHERE is_verified = 1

A burst of concurrent wrong guesses therefore cannot push a challenge past its
attempt cap, and a code can be consumed exactly once.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_
from sqlalchemy.engine import Engine

from auth.models import OtpChallenge
from auth.schema import make_engine, otp_challenges
from core.clock import to_iso


class OtpLedger:
    """Repository for OtpChallenge rows."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)

    def _pair(self, phone_number: str, purpose: str):
        return and_(otp_challenges.c.phone_number == phone_number, otp_challenges.c.purpose == purpose)

    def last_created(self, phone_number: str, purpose: str) -> OtpChallenge | None:
        """Most recent challenge for the pair, verified or not."""
        with self.engine.connect() as conn:
            row = conn.execute(
                otp_challenges.select()
                .where(self._pair(phone_number, purpose))
                .order_by(otp_challenges.c.created_at.desc(), otp_challenges.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_challenge(row) if row is not None else None

    def latest_open(self, phone_number: str, purpose: str) -> OtpChallenge | None:
        """Most recent unverified challenge for the pair (expired or not)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                otp_challenges.select()
                .where(and_(self._pair(phone_number, purpose), otp_challenges.c.is_verified == 0))
                .order_by(otp_challenges.c.created_at.desc(), otp_challenges.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_challenge(row) if row is not None else None

    def get(self, challenge_id: int) -> OtpChallenge | None:
        with self.engine.connect() as conn:
            row = conn.execute(otp_challenges.select().where(otp_challenges.c.id == challenge_id)).fetchone()
        return _row_to_challenge(row) if row is not None else None

    def open_challenge(self, challenge: OtpChallenge, now: datetime) -> int:
        """Persist a new challenge, replacing whatever was open for the pair.

        In one transaction: purge the pair's expired rows, drop its remaining
        unverified rows (a fresh code supersedes them), insert the new row.
        """
        pair = self._pair(challenge.phone_number, challenge.purpose)
        with self.engine.begin() as conn:
            conn.execute(otp_challenges.delete().where(and_(pair, otp_challenges.c.expires_at < to_iso(now))))
            conn.execute(otp_challenges.delete().where(and_(pair, otp_challenges.c.is_verified == 0)))
            result = conn.execute(
                otp_challenges.insert().values(
                    phone_number=challenge.phone_number,
                    purpose=challenge.purpose,
                    code=challenge.code,
                    created_at=challenge.created_at,
                    expires_at=challenge.expires_at,
                    attempts=0,
                    is_verified=0,
                )
            )
            return result.inserted_primary_key[0]

    def record_failed_attempt(self, challenge_id: int, max_attempts: int) -> bool:
        """Increment the attempt counter unless the cap is already reached."""
        with self.engine.connect() as conn:
            result = conn.execute(
                otp_challenges.update()
                .where(and_(otp_challenges.c.id == challenge_id, otp_challenges.c.attempts < max_attempts))
                .values(attempts=otp_challenges.c.attempts + 1)
            )
            conn.commit()
        return result.rowcount == 1

    def mark_verified(self, challenge_id: int, max_attempts: int) -> bool:
        """Consume the challenge. False if it was consumed or exhausted meanwhile."""
        with self.engine.connect() as conn:
            result = conn.execute(
                otp_challenges.update()
                .where(
                    and_(
                        otp_challenges.c.id == challenge_id,
                        otp_challenges.c.is_verified == 0,
                        otp_challenges.c.attempts < max_attempts,
                    )
                )
                .values(is_verified=1)
            )
            conn.commit()
        return result.rowcount == 1

    def latest_verified(self, phone_number: str, purpose: str) -> OtpChallenge | None:
        """Most recent verified, not yet redeemed challenge for the pair."""
        with self.engine.connect() as conn:
            row = conn.execute(
                otp_challenges.select()
                .where(and_(self._pair(phone_number, purpose), otp_challenges.c.is_verified == 1))
                .order_by(otp_challenges.c.created_at.desc(), otp_challenges.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_challenge(row) if row is not None else None

    def redeem(self, challenge_id: int) -> bool:
        """Delete a verified challenge. True for exactly one caller."""
        with self.engine.connect() as conn:
            result = conn.execute(
                otp_challenges.delete().where(
                    and_(otp_challenges.c.id == challenge_id, otp_challenges.c.is_verified == 1)
                )
            )
            conn.commit()
        return result.rowcount == 1

    def purge_expired(self, now: datetime) -> int:
        """Delete every expired challenge. Returns the number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(otp_challenges.delete().where(otp_challenges.c.expires_at < to_iso(now)))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def _row_to_challenge(row) -> OtpChallenge:
    return OtpChallenge(
        id=row.id,
        phone_number=row.phone_number,
        purpose=row.purpose,
        code=row.code,
        created_at=row.created_at,
        expires_at=row.expires_at,
        attempts=row.attempts,
        is_verified=bool(row.is_verified),
    )
