"""
auth/gateway.py -- Auth Gateway: the public operations of the auth core.

Every operation follows the same pipeline:

  rate limiter -> provider verifier -> identity resolver -> token service

The limiter is always consulted first with the caller's rate key (built by
auth.dependencies.rate_limit_key from address, caller id, method and route
template). A rejection raises RateExceeded before any verifier runs.

Participant flows (OTP phone login/registration, OAuth, signed widget) end in
IdentityResolver.resolve(), which links identities of one person onto one
User. Operator flows use the Admin record directly -- operator accounts are
never resolved or linked against participant Users.

One code path per provider. The HTTP layer maps each route to exactly one
method here and never talks to verifiers or stores itself.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.admin_store import SUPER_ADMIN_ROLE, AdminStore
from auth.errors import (
    Conflict,
    Forbidden,
    InactiveAccount,
    InternalError,
    InvalidActivationLink,
    InvalidPassword,
    RateExceeded,
    Unauthorized,
    ValidationError,
)
from auth.models import Admin, Audience, OtpChallenge, OtpPurpose, Principal, Provider, TokenPair, User
from auth.oauth import GOOGLE, verify_oauth_profile
from auth.otp import OtpDispatch, OtpVerifier, parse_purpose
from auth.otp_store import OtpLedger
from auth.passwords import PasswordVerifier, hash_password, verify_password
from auth.permissions import AdminRole, is_operation_allowed, parse_admin_role
from auth.phone import normalize_phone
from auth.ratelimit import RateLimiter
from auth.resolver import IdentityResolver
from auth.store import CredentialStore
from auth.tokens import TokenService
from auth.transports import EskizSms, LogMailer, LogOnlySms, Mailer, SmsTransport
from auth.widget import WidgetVerifier
from core.clock import Clock, utc_now
from core.config import Settings

logger = logging.getLogger("marketauth.gateway")


@dataclass(frozen=True)
class AuthResult:
    """A freshly issued token pair and the account it was issued for."""

    tokens: TokenPair
    user: User | None = None
    admin: Admin | None = None
    created: bool = False


class AuthGateway:
    def __init__(
        self,
        settings: Settings,
        limiter: RateLimiter,
        store: CredentialStore,
        admin_store: AdminStore,
        ledger: OtpLedger,
        sms: SmsTransport,
        mailer: Mailer,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings
        self.limiter = limiter
        self.store = store
        self.admin_store = admin_store
        self.ledger = ledger
        self.otp = OtpVerifier(ledger, sms, settings, clock)
        self.widget = WidgetVerifier(settings.widget_bot_token, settings.widget_max_age_seconds, clock)
        self.passwords = PasswordVerifier(admin_store, settings.bcrypt_rounds)
        self.resolver = IdentityResolver(store)
        self.tokens = TokenService(
            settings,
            {Audience.PARTICIPANT: store, Audience.OPERATOR: admin_store},
            clock,
        )
        self._mailer = mailer
        # has_admins() + create_admin() must not interleave, or two callers
        # could both bootstrap a creator account.
        self._bootstrap_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _guard(self, rate_key: str, limit: int | None = None) -> None:
        decision = self.limiter.check(rate_key, limit=limit)
        if not decision.allowed:
            raise RateExceeded(decision.retry_after)

    def _issue_participant(self, user: User, provider: Provider, created: bool = False) -> AuthResult:
        if not user.is_active:
            raise InactiveAccount(f"User {user.id} is disabled")
        subject = self.store.load_subject(user.id, provider.value)
        if subject is None:
            raise InactiveAccount(f"User {user.id} is disabled")
        return AuthResult(tokens=self.tokens.issue(subject), user=user, created=created)

    def _active_user(self, subject_id: int) -> User:
        user = self.store.get_by_id(subject_id)
        if user is None or not user.is_active:
            raise Unauthorized(f"User {subject_id} is missing or disabled")
        return user

    def _active_admin(self, subject_id: int) -> Admin:
        admin = self.admin_store.get_by_id(subject_id)
        if admin is None or not admin.is_active:
            raise Unauthorized(f"Operator {subject_id} is missing or disabled")
        return admin

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    def send_otp(self, rate_key: str, phone_number: str, purpose: str | OtpPurpose) -> OtpDispatch:
        """Send (or resend) a one-time code for (phone, purpose)."""
        self._guard(rate_key, self.settings.otp_send_rate_limit)
        return self.otp.send(normalize_phone(phone_number), parse_purpose(purpose))

    def verify_otp(self, rate_key: str, phone_number: str, code: str, purpose: str | OtpPurpose) -> OtpChallenge:
        self._guard(rate_key)
        return self.otp.verify(normalize_phone(phone_number), code, parse_purpose(purpose))

    def check_phone(self, rate_key: str, phone_number: str) -> bool:
        """Report whether a participant is registered under phone_number."""
        self._guard(rate_key)
        return self.store.get_by_phone(normalize_phone(phone_number)) is not None

    # ------------------------------------------------------------------
    # Phone flows
    # ------------------------------------------------------------------

    def login_with_phone(self, rate_key: str, phone_number: str, code: str) -> AuthResult:
        """Sign in with a login code. Unknown numbers get a new account."""
        self._guard(rate_key)
        phone = normalize_phone(phone_number)
        self.otp.redeem(phone, code, OtpPurpose.LOGIN)

        resolution = self.resolver.resolve(
            Provider.OTP_PHONE.value,
            provider_id=phone,
            phone_number=phone,
            verified=True,
        )
        user = resolution.user
        if not user.is_active:
            raise InactiveAccount(f"User {user.id} is disabled")
        if not user.is_verified:
            # Holding the code proves control of the number.
            self.store.set_verified(user.id)
            user = self.store.get_by_id(user.id)
        return self._issue_participant(user, Provider.OTP_PHONE, created=resolution.created)

    def register_with_phone(
        self,
        rate_key: str,
        phone_number: str,
        code: str,
        first_name: str = "",
        last_name: str = "",
    ) -> AuthResult:
        self._guard(rate_key)
        phone = normalize_phone(phone_number)
        self.otp.redeem(phone, code, OtpPurpose.REGISTRATION)

        if self.store.get_by_phone(phone) is not None:
            raise Conflict("This phone number is already registered.")
        resolution = self.resolver.resolve(
            Provider.OTP_PHONE.value,
            provider_id=phone,
            phone_number=phone,
            first_name=first_name,
            last_name=last_name,
            verified=True,
        )
        if not resolution.created:
            # Lost a race against a concurrent registration for the same number.
            raise Conflict("This phone number is already registered.")
        return self._issue_participant(resolution.user, Provider.OTP_PHONE, created=True)

    def verify_user_phone(self, rate_key: str, subject_id: int, phone_number: str, code: str) -> User:
        """Mark the signed-in participant verified after proving their own number."""
        self._guard(rate_key)
        phone = normalize_phone(phone_number)
        user = self._active_user(subject_id)
        if user.phone_number != phone:
            raise Conflict("This phone number does not belong to your account.")
        self.otp.redeem(phone, code, OtpPurpose.PHONE_VERIFICATION)
        self.store.set_verified(user.id)
        logger.info("Phone verified for user %s", user.id)
        return self.store.get_by_id(user.id)

    # ------------------------------------------------------------------
    # Third-party providers
    # ------------------------------------------------------------------

    def admit(self, rate_key: str) -> None:
        """Consult the limiter on its own, for flows with an outbound step before verification."""
        self._guard(rate_key)

    def oauth_login(self, token: dict, provider: str = GOOGLE) -> AuthResult:
        """Finish an OAuth redirect: token is authlib's token response.

        The callback route calls admit() before exchanging the authorization
        code, so the limiter still runs ahead of any provider round trip.
        """
        profile = verify_oauth_profile(token, provider)
        resolution = self.resolver.resolve(
            Provider.OAUTH_PROFILE.value,
            provider_id=profile.provider_id,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            photo_url=profile.photo_url,
            verified=True,
        )
        return self._issue_participant(resolution.user, Provider.OAUTH_PROFILE, created=resolution.created)

    def widget_login(self, rate_key: str, fields: dict) -> AuthResult:
        self._guard(rate_key)
        if not self.widget.enabled:
            raise InternalError("Widget login is not configured.")
        profile = self.widget.verify(fields)
        resolution = self.resolver.resolve(
            Provider.SIGNED_WIDGET.value,
            provider_id=profile.provider_id,
            email=profile.synthetic_email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            photo_url=profile.photo_url,
            verified=True,
        )
        return self._issue_participant(resolution.user, Provider.SIGNED_WIDGET, created=resolution.created)

    # ------------------------------------------------------------------
    # Participant session
    # ------------------------------------------------------------------

    def refresh(self, rate_key: str, refresh_token: str) -> TokenPair:
        self._guard(rate_key)
        return self.tokens.refresh(refresh_token, Audience.PARTICIPANT)

    def logout(self, rate_key: str, subject_id: int) -> None:
        self._guard(rate_key)
        self.tokens.revoke(subject_id, Audience.PARTICIPANT)

    def profile(self, rate_key: str, subject_id: int) -> User:
        self._guard(rate_key)
        return self._active_user(subject_id)

    def linked_providers(self, user_id: int) -> list[str]:
        return [link.provider for link in self.store.get_links(user_id)]

    def providers(self, rate_key: str) -> list[dict]:
        """Sign-in methods and whether each is configured."""
        self._guard(rate_key)
        cfg = self.settings
        return [
            {"name": Provider.OTP_PHONE.value, "label": "Phone (SMS code)", "enabled": True},
            {"name": GOOGLE, "label": "Google", "enabled": bool(cfg.google_client_id and cfg.google_client_secret)},
            {"name": Provider.SIGNED_WIDGET.value, "label": "Telegram", "enabled": self.widget.enabled},
        ]

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def admin_sign_up(
        self,
        rate_key: str,
        email: str,
        password: str,
        role: str = AdminRole.ADMIN.value,
        actor: Principal | None = None,
    ) -> Admin:
        """Create an operator account and mail its activation link.

        The very first operator may sign up unauthenticated and becomes the
        creator (super_admin). Every later sign-up needs an operator whose
        role grants admins.create.
        """
        self._guard(rate_key, self.settings.sign_in_rate_limit)
        email = email.strip().lower()
        requested = parse_admin_role(role)
        if requested is None:
            raise ValidationError(f"Unknown operator role {role!r}.")

        with self._bootstrap_lock:
            bootstrap = not self.admin_store.has_admins()
            if not bootstrap:
                if actor is None or actor.audience is not Audience.OPERATOR:
                    raise Unauthorized("Operator sign-up requires an operator session")
                if not is_operation_allowed(parse_admin_role(actor.role), "admins.create"):
                    raise Forbidden(f"Operator {actor.subject_id} may not create operators")
                if requested is AdminRole.SUPER_ADMIN:
                    raise ValidationError("The super_admin role is reserved for the creator account.")

            admin = Admin(
                email=email,
                hashed_password=hash_password(password, self.settings.bcrypt_rounds),
                role=SUPER_ADMIN_ROLE if bootstrap else requested.value,
                activation_link=secrets.token_urlsafe(32),
                is_creator=bootstrap,
            )
            try:
                admin.id = self.admin_store.create_admin(admin)
            except IntegrityError:
                raise Conflict("An operator with that email already exists.") from None

        url = f"{self.settings.public_base_url.rstrip('/')}/api/v1/admin/auth/activate/{admin.activation_link}"
        self._mailer.send(admin.email, "Activate your operator account", f"Open this link to activate your account:\n{url}")
        logger.info("Operator %s created (creator=%s)", admin.id, bootstrap)
        return self.admin_store.get_by_id(admin.id)

    def admin_activate(self, rate_key: str, link: str) -> Admin:
        self._guard(rate_key)
        admin = self.admin_store.activate(link)
        if admin is None:
            logger.warning("Activation attempted with unknown or used link")
            raise InvalidActivationLink()
        logger.info("Operator %s activated", admin.id)
        return admin

    def admin_sign_in(self, rate_key: str, email: str, password: str) -> AuthResult:
        self._guard(rate_key, self.settings.sign_in_rate_limit)
        admin = self.passwords.authenticate(email.strip().lower(), password)
        subject = self.admin_store.load_subject(admin.id, Provider.PASSWORD.value)
        if subject is None:
            raise InactiveAccount(f"Operator {admin.id} is not active")
        return AuthResult(tokens=self.tokens.issue(subject), admin=admin)

    def admin_refresh(self, rate_key: str, refresh_token: str) -> TokenPair:
        self._guard(rate_key)
        return self.tokens.refresh(refresh_token, Audience.OPERATOR)

    def admin_sign_out(self, rate_key: str, subject_id: int) -> None:
        self._guard(rate_key)
        self.tokens.revoke(subject_id, Audience.OPERATOR)

    def admin_change_password(self, rate_key: str, subject_id: int, current_password: str, new_password: str) -> None:
        """Replace the password and end every operator session for the account."""
        self._guard(rate_key, self.settings.sign_in_rate_limit)
        admin = self._active_admin(subject_id)
        if not verify_password(current_password, admin.hashed_password):
            raise InvalidPassword(f"Wrong current password for operator {admin.id}")
        self.admin_store.update_password(admin.id, hash_password(new_password, self.settings.bcrypt_rounds))
        self.tokens.revoke(admin.id, Audience.OPERATOR)
        logger.info("Operator %s changed password", admin.id)

    def admin_profile(self, rate_key: str, subject_id: int) -> Admin:
        self._guard(rate_key)
        return self._active_admin(subject_id)

    def close(self) -> None:
        self.store.close()
        self.admin_store.close()
        self.ledger.close()


def build_gateway(
    settings: Settings,
    clock: Clock = utc_now,
    sms: SmsTransport | None = None,
    mailer: Mailer | None = None,
) -> AuthGateway:
    """Wire stores, transports and the limiter from settings."""
    if sms is None:
        if settings.sms_enabled:
            sms = EskizSms(settings.sms_base_url, settings.sms_email, settings.sms_password, settings.sms_sender)
        else:
            sms = LogOnlySms()
    return AuthGateway(
        settings=settings,
        limiter=RateLimiter(
            settings.rate_limit_storage_uri,
            settings.rate_limit_default,
            settings.rate_limit_window_seconds,
        ),
        store=CredentialStore(settings.database_url, clock),
        admin_store=AdminStore(settings.database_url, clock),
        ledger=OtpLedger(settings.database_url),
        sms=sms,
        mailer=mailer or LogMailer(),
        clock=clock,
    )
