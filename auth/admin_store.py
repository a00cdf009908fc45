"""
auth/admin_store.py -- SQLAlchemy Core persistence for operator accounts.

Same Repository + Data Mapper shape as auth/store.py. Operator accounts are a
separate table on purpose: they are never unified with participant Users, and
their refresh-token hash lives on the admin row itself.

Activation:
  activate() is a single conditional UPDATE that flips is_active and retires
  the link in the same statement. A second click on the same link matches no
  row, so activation is single-use even under concurrent requests.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import and_, func, select
from sqlalchemy.engine import Engine

from auth.models import Admin, Audience, TokenSubject
from auth.schema import admins, make_engine
from core.clock import Clock, to_iso, utc_now

SUPER_ADMIN_ROLE = "super_admin"


class AdminStore:
    """Repository for Admin entities."""

    def __init__(self, db_url: str, clock: Clock = utc_now) -> None:
        self.engine: Engine = make_engine(db_url)
        self._clock = clock

    def has_admins(self) -> bool:
        """Return True if at least one admin record exists.

        Used by sign-up to decide whether the caller may bootstrap the first
        (creator) account without being signed in.
        """
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(admins)).scalar()
        return (result or 0) > 0

    def create_admin(self, admin: Admin) -> int:
        """Insert a new admin and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                admins.insert().values(
                    email=admin.email,
                    hashed_password=admin.hashed_password,
                    role=admin.role,
                    activation_link=admin.activation_link,
                    is_active=1 if admin.is_active else 0,
                    is_creator=1 if admin.is_creator else 0,
                    created_at=to_iso(self._clock()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, admin_id: int) -> Admin | None:
        with self.engine.connect() as conn:
            row = conn.execute(admins.select().where(admins.c.id == admin_id)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def get_by_email(self, email: str) -> Admin | None:
        with self.engine.connect() as conn:
            row = conn.execute(admins.select().where(admins.c.email == email)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def activate(self, link: str) -> Admin | None:
        """Activate the inactive admin holding link and retire the link.

        Returns the activated Admin, or None if no inactive admin holds it.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                admins.select().where(and_(admins.c.activation_link == link, admins.c.is_active == 0))
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                admins.update()
                .where(and_(admins.c.id == row.id, admins.c.activation_link == link, admins.c.is_active == 0))
                .values(is_active=1, activation_link=None)
            )
            conn.commit()
        if result.rowcount != 1:
            return None
        return self.get_by_id(row.id)

    def update_password(self, admin_id: int, hashed_password: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                admins.update().where(admins.c.id == admin_id).values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh-token hash
    # ------------------------------------------------------------------

    def get_refresh_hash(self, subject_id: int) -> str | None:
        with self.engine.connect() as conn:
            return conn.execute(select(admins.c.hashed_refresh_token).where(admins.c.id == subject_id)).scalar()

    def set_refresh_hash(self, subject_id: int, hashed: str | None) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(admins.update().where(admins.c.id == subject_id).values(hashed_refresh_token=hashed))
            conn.commit()
        return result.rowcount > 0

    def swap_refresh_hash(self, subject_id: int, expected: str, hashed: str) -> bool:
        """Conditional overwrite -- see CredentialStore.swap_refresh_hash()."""
        with self.engine.connect() as conn:
            result = conn.execute(
                admins.update()
                .where(and_(admins.c.id == subject_id, admins.c.hashed_refresh_token == expected))
                .values(hashed_refresh_token=hashed)
            )
            conn.commit()
        return result.rowcount == 1

    def load_subject(self, subject_id: int, provider: str) -> TokenSubject | None:
        admin = self.get_by_id(subject_id)
        if admin is None or not admin.is_active:
            return None
        return TokenSubject(
            id=admin.id,
            audience=Audience.OPERATOR,
            role=effective_role(admin),
            provider=provider,
            is_verified=True,
        )

    def close(self) -> None:
        self.engine.dispose()


def effective_role(admin: Admin) -> str:
    """The creator flag outranks the stored role column."""
    return SUPER_ADMIN_ROLE if admin.is_creator else admin.role


def _row_to_admin(row) -> Admin:
    return Admin(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        activation_link=row.activation_link,
        is_active=bool(row.is_active),
        is_creator=bool(row.is_creator),
        hashed_refresh_token=row.hashed_refresh_token,
        created_at=row.created_at,
    )
