"""
auth/resolver.py -- Identity resolver: verified provider identity -> canonical User.

Resolution order, first hit wins:
  1. ProviderLink match on (provider, provider_id), when an id was supplied.
  2. User match on email or phone number, when supplied. If that user has no
     link for this provider yet, a non-primary link is attached (account
     linking) -- one person's SMS, OAuth and widget identities end up on one
     User instead of three. A user already linked to a different identity of
     the same provider is refused with IdentityConflict; the contact alone
     never lets a second identity into that account.
  3. Create a new User with a primary ProviderLink.

Step 3 can lose a race to a concurrent request creating the same person
(unique email / phone / provider identity). The IntegrityError is taken as
"someone else created it" and the lookups run once more.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.errors import IdentityConflict, InternalError
from auth.models import User
from auth.store import CredentialStore

logger = logging.getLogger("marketauth.resolver")


@dataclass(frozen=True)
class Resolution:
    user: User
    created: bool = False
    linked: bool = False


class IdentityResolver:
    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    def resolve(
        self,
        provider: str,
        provider_id: str | None = None,
        email: str | None = None,
        phone_number: str | None = None,
        first_name: str = "",
        last_name: str = "",
        photo_url: str | None = None,
        verified: bool = False,
    ) -> Resolution:
        found = self._lookup(provider, provider_id, email, phone_number)
        if found is not None:
            return found

        new_user = User(
            email=email,
            phone_number=phone_number,
            first_name=first_name,
            last_name=last_name,
            photo_url=photo_url,
            is_verified=verified,
        )
        try:
            user_id = self._store.create_user_with_link(new_user, provider, provider_id)
        except IntegrityError:
            logger.info("Concurrent creation for %s identity; re-resolving", provider)
            found = self._lookup(provider, provider_id, email, phone_number)
            if found is None:
                raise InternalError("Identity could not be resolved.") from None
            return found

        user = self._store.get_by_id(user_id)
        logger.info("Created user %s via %s", user_id, provider)
        return Resolution(user=user, created=True)

    def _lookup(
        self,
        provider: str,
        provider_id: str | None,
        email: str | None,
        phone_number: str | None,
    ) -> Resolution | None:
        if provider_id is not None:
            user = self._store.get_by_link(provider, provider_id)
            if user is not None:
                return Resolution(user=user)

        user = self._store.find_by_contact(email=email, phone_number=phone_number)
        if user is None:
            return None

        existing = self._store.get_link(user.id, provider)
        if existing is not None:
            if provider_id is not None and existing.provider_id not in (None, provider_id):
                raise IdentityConflict(
                    f"User {user.id} already holds {provider} identity {existing.provider_id}, refusing {provider_id}"
                )
            return Resolution(user=user)
        try:
            self._store.add_link(user.id, provider, provider_id)
        except IntegrityError:
            # A concurrent request linked this identity first; fine only if it landed on the same user.
            owner = self._store.get_by_link(provider, provider_id) if provider_id is not None else user
            if owner is None or owner.id != user.id:
                raise IdentityConflict(f"{provider} identity {provider_id} is linked to another user") from None
            return Resolution(user=user)
        logger.info("Linked %s identity to existing user %s", provider, user.id)
        return Resolution(user=user, linked=True)
