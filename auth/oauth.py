"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration and profile verifier.

Reads configuration from core.config.get_settings() at module load to decide
whether the Google provider is active. It is registered only when both client
ID and secret are configured.

Security notes:
  [H1] Email verification is mandatory. verify_oauth_profile() raises
       UnverifiedIdentity if the provider does not confirm the email is
       verified. The resolver links accounts by email, so an unverified
       address would let an attacker attach themselves to a victim's account.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from auth.errors import UnverifiedIdentity
from core.config import get_settings

logger = logging.getLogger("marketauth.oauth")

GOOGLE = "google"

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name=GOOGLE,
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


@dataclass(frozen=True)
class OAuthProfile:
    provider_id: str
    email: str
    first_name: str
    last_name: str
    photo_url: str | None = None


def verify_oauth_profile(token: dict, provider: str = GOOGLE) -> OAuthProfile:
    """Extract a verified profile from an authlib token response.

    The id_token claims (parsed by authlib into token["userinfo"]) must carry
    sub, email and email_verified=True. Providers that omit email_verified
    are treated as unverified [H1].
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise UnverifiedIdentity(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise UnverifiedIdentity(f"{provider} OAuth: email is not verified")

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")
    if not email or not subject_id:
        raise UnverifiedIdentity(f"{provider} OAuth: missing email or sub claim in userinfo")

    return OAuthProfile(
        provider_id=str(subject_id),
        email=email.lower(),
        first_name=userinfo.get("given_name") or "",
        last_name=userinfo.get("family_name") or "",
        photo_url=userinfo.get("picture"),
    )
