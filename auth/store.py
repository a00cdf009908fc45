"""
auth/store.py -- SQLAlchemy Core persistence for participant identities.

Pattern: Repository + Data Mapper. CredentialStore is the repository for
User and ProviderLink rows; _row_to_user / _row_to_link are the mappers.
Service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL, ever -- identity
  lookups take caller-supplied emails and phone numbers.

Refresh-token hash location:
  The hash for a participant session lives on the user's primary
  ProviderLink and nowhere else. swap_refresh_hash() is a conditional UPDATE
  ("set new hash only if the current hash is still X"), which makes the
  read-compare-overwrite of a rotation atomic per subject without any
  process-local lock.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import and_, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import Audience, ProviderLink, TokenSubject, User
from auth.schema import make_engine, provider_links, users
from core.clock import Clock, to_iso, utc_now


class CredentialStore:
    """Repository for User and ProviderLink entities.

    Usage:
        store = CredentialStore("sqlite:///auth.db")
        user_id = store.create_user_with_link(User(phone_number="+998901234567"), "otp-phone", "+998901234567")
        user = store.get_by_phone("+998901234567")
        store.close()
    """

    def __init__(self, db_url: str, clock: Clock = utc_now) -> None:
        self.engine: Engine = make_engine(db_url)
        self._clock = clock

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_phone(self, phone_number: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.phone_number == phone_number)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_contact(self, email: str | None = None, phone_number: str | None = None) -> User | None:
        """Return the user owning email OR phone_number, lowest id first.

        Only the supplied values take part in the predicate; with neither
        supplied there is nothing to match and None is returned.
        """
        conditions = []
        if email:
            conditions.append(users.c.email == email)
        if phone_number:
            conditions.append(users.c.phone_number == phone_number)
        if not conditions:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(or_(*conditions)).order_by(users.c.id).limit(1)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_link(self, provider: str, provider_id: str) -> User | None:
        """Look up the user behind a (provider, provider_id) identity."""
        stmt = (
            select(users)
            .join(provider_links, provider_links.c.user_id == users.c.id)
            .where(and_(provider_links.c.provider == provider, provider_links.c.provider_id == provider_id))
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user(row) if row is not None else None

    def create_user_with_link(self, user: User, provider: str, provider_id: str | None) -> int:
        """Insert a user and its primary ProviderLink in one transaction.

        Raises sqlalchemy.exc.IntegrityError if the email, phone number or
        provider identity is already taken. The resolver treats that as a lost
        race and re-runs its lookups.
        """
        now = to_iso(self._clock())
        with self.engine.begin() as conn:
            result = conn.execute(
                users.insert().values(
                    email=user.email,
                    phone_number=user.phone_number,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    photo_url=user.photo_url,
                    role=user.role,
                    is_active=1 if user.is_active else 0,
                    is_verified=1 if user.is_verified else 0,
                    created_at=now,
                )
            )
            user_id = result.inserted_primary_key[0]
            conn.execute(
                provider_links.insert().values(
                    user_id=user_id,
                    provider=provider,
                    provider_id=provider_id,
                    is_primary=1,
                    created_at=now,
                )
            )
        return user_id

    def set_verified(self, user_id: int, verified: bool = True) -> None:
        with self.engine.connect() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(is_verified=1 if verified else 0))
            conn.commit()

    def set_active(self, user_id: int, active: bool) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(is_active=1 if active else 0))
            conn.commit()
        return result.rowcount > 0

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Provider links
    # ------------------------------------------------------------------

    def get_links(self, user_id: int) -> list[ProviderLink]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                provider_links.select().where(provider_links.c.user_id == user_id).order_by(provider_links.c.id)
            ).fetchall()
        return [_row_to_link(r) for r in rows]

    def get_link(self, user_id: int, provider: str) -> ProviderLink | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                provider_links.select().where(
                    and_(provider_links.c.user_id == user_id, provider_links.c.provider == provider)
                )
            ).fetchone()
        return _row_to_link(row) if row is not None else None

    def add_link(self, user_id: int, provider: str, provider_id: str | None) -> int:
        """Attach a non-primary link to an existing user (account linking).

        New links are never primary: the primary flag is assigned once, when
        the user is created, which keeps "at most one primary" trivially true.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                provider_links.insert().values(
                    user_id=user_id,
                    provider=provider,
                    provider_id=provider_id,
                    is_primary=0,
                    created_at=to_iso(self._clock()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Refresh-token hash (primary link)
    # ------------------------------------------------------------------

    def _primary(self, user_id: int):
        return and_(provider_links.c.user_id == user_id, provider_links.c.is_primary == 1)

    def get_refresh_hash(self, subject_id: int) -> str | None:
        with self.engine.connect() as conn:
            return conn.execute(
                select(provider_links.c.hashed_refresh_token).where(self._primary(subject_id))
            ).scalar()

    def set_refresh_hash(self, subject_id: int, hashed: str | None) -> bool:
        """Unconditionally overwrite (or clear, with None) the stored hash.

        Returns False if the user has no primary link.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                provider_links.update().where(self._primary(subject_id)).values(hashed_refresh_token=hashed)
            )
            conn.commit()
        return result.rowcount > 0

    def swap_refresh_hash(self, subject_id: int, expected: str, hashed: str) -> bool:
        """Replace the stored hash only if it still equals expected.

        Exactly one of two concurrent rotations of the same refresh token
        sees rowcount == 1; the other gets False and must be denied.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                provider_links.update()
                .where(and_(self._primary(subject_id), provider_links.c.hashed_refresh_token == expected))
                .values(hashed_refresh_token=hashed)
            )
            conn.commit()
        return result.rowcount == 1

    def load_subject(self, subject_id: int, provider: str) -> TokenSubject | None:
        """Return the token subject for an active user, None otherwise."""
        user = self.get_by_id(subject_id)
        if user is None or not user.is_active:
            return None
        return TokenSubject(
            id=user.id,
            audience=Audience.PARTICIPANT,
            role=user.role,
            provider=provider,
            is_verified=user.is_verified,
        )

    def ping(self) -> None:
        """Round-trip the database. Raises OperationalError when it is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(select(1))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        phone_number=row.phone_number,
        first_name=row.first_name,
        last_name=row.last_name,
        photo_url=row.photo_url,
        role=row.role,
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
    )


def _row_to_link(row) -> ProviderLink:
    return ProviderLink(
        id=row.id,
        user_id=row.user_id,
        provider=row.provider,
        provider_id=row.provider_id,
        is_primary=bool(row.is_primary),
        hashed_refresh_token=row.hashed_refresh_token,
        created_at=row.created_at,
    )
