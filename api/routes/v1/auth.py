"""
api/routes/v1/auth.py -- Participant authentication REST endpoints.

Routes:
  POST /api/v1/auth/otp/send         -- send or resend a one-time code
  POST /api/v1/auth/otp/verify       -- verify a code on its own
  POST /api/v1/auth/phone/check      -- is this number registered?
  POST /api/v1/auth/phone/login      -- sign in with a login code
  POST /api/v1/auth/phone/register   -- create an account with a registration code
  POST /api/v1/auth/phone/verify     -- verify the signed-in user's own number (requires auth)
  GET  /api/v1/auth/google/login     -- start the OAuth redirect
  GET  /api/v1/auth/google/callback  -- finish the OAuth redirect; issues tokens
  POST /api/v1/auth/widget/login     -- sign in with a signed widget assertion
  POST /api/v1/auth/refresh          -- rotate the refresh token (body or cookie)
  POST /api/v1/auth/logout           -- revoke the refresh token (requires auth)
  GET  /api/v1/auth/me               -- current participant (requires auth)
  GET  /api/v1/auth/providers        -- configured sign-in methods (public)

Every handler hands its work to the Auth Gateway (request.app.state.gateway)
together with the rate key from rate_limit_key(); errors propagate as
AuthError and are rendered by api/main.py.

Security:
  [M5] Cache-Control: no-store on every response that carries tokens.
  Refresh tokens are also set as an httpOnly cookie scoped to /api/v1/auth.
"""

from __future__ import annotations

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.models import (
    AuthResponse,
    CheckPhoneRequest,
    MessageResponse,
    OtpSentResponse,
    OtpVerifiedResponse,
    PhoneLoginRequest,
    PhoneRegisterRequest,
    PhoneStatusResponse,
    ProviderInfo,
    RefreshRequest,
    SendOtpRequest,
    TokenResponse,
    UserResponse,
    VerifyOtpRequest,
    VerifyUserPhoneRequest,
    WidgetLoginRequest,
)
from auth.dependencies import get_participant, rate_limit_key
from auth.errors import Unauthorized, UnverifiedIdentity
from auth.gateway import AuthGateway, AuthResult
from auth.models import Principal, TokenPair
from auth.oauth import GOOGLE
from auth.phone import normalize_phone
from core.config import get_settings

# Auth policy:
# - otp/*, phone/check|login|register, google/*, widget/login, refresh, providers: public
# - phone/verify, logout, me: participant access token (get_participant)
router = APIRouter()

REFRESH_COOKIE = "refresh_token"
_COOKIE_PATH = "/api/v1/auth"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def set_refresh_cookie(response, token: str, max_age: int, name: str = REFRESH_COOKIE, path: str = _COOKIE_PATH) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": the cookie is only needed by same-site refresh calls.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    path: limited to the auth routes that read it.
    """
    response.set_cookie(
        name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=get_settings().secure_cookies,
        max_age=max_age,
        path=path,
    )


def token_response(content: dict, pair: TokenPair, status_code: int = 200, **cookie) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    set_refresh_cookie(resp, pair.refresh_token, pair.refresh_expires_in, **cookie)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _auth_response(gateway: AuthGateway, result: AuthResult, status_code: int = 200) -> JSONResponse:
    pair = result.tokens
    body = AuthResponse(
        **TokenResponse.from_pair(pair).model_dump(),
        user=UserResponse.from_user(result.user, gateway.linked_providers(result.user.id)),
        created=result.created,
    )
    return token_response(body.model_dump(), pair, status_code=status_code)


# ---------------------------------------------------------------------------
# One-time passwords
# ---------------------------------------------------------------------------


@router.post("/auth/otp/send", response_model=OtpSentResponse)
def send_otp(request: Request, body: SendOtpRequest, rate_key: str = Depends(rate_limit_key)) -> OtpSentResponse:
    """Send a code to phone_number. Calling again after 60 seconds resends."""
    dispatch = _gateway(request).send_otp(rate_key, body.phone_number, body.purpose)
    return OtpSentResponse(
        phone_number=dispatch.phone_number,
        purpose=dispatch.purpose,
        expires_in=dispatch.expires_in,
    )


@router.post("/auth/otp/verify", response_model=OtpVerifiedResponse)
def verify_otp(request: Request, body: VerifyOtpRequest, rate_key: str = Depends(rate_limit_key)) -> OtpVerifiedResponse:
    challenge = _gateway(request).verify_otp(rate_key, body.phone_number, body.code, body.purpose)
    return OtpVerifiedResponse(phone_number=challenge.phone_number, purpose=challenge.purpose)


# ---------------------------------------------------------------------------
# Phone accounts
# ---------------------------------------------------------------------------


@router.post("/auth/phone/check", response_model=PhoneStatusResponse)
def check_phone(request: Request, body: CheckPhoneRequest, rate_key: str = Depends(rate_limit_key)) -> PhoneStatusResponse:
    registered = _gateway(request).check_phone(rate_key, body.phone_number)
    return PhoneStatusResponse(phone_number=normalize_phone(body.phone_number), registered=registered)


@router.post("/auth/phone/login", response_model=AuthResponse)
def phone_login(request: Request, body: PhoneLoginRequest, rate_key: str = Depends(rate_limit_key)) -> JSONResponse:
    gateway = _gateway(request)
    result = gateway.login_with_phone(rate_key, body.phone_number, body.code)
    return _auth_response(gateway, result)


@router.post("/auth/phone/register", response_model=AuthResponse, status_code=201)
def phone_register(
    request: Request, body: PhoneRegisterRequest, rate_key: str = Depends(rate_limit_key)
) -> JSONResponse:
    gateway = _gateway(request)
    result = gateway.register_with_phone(rate_key, body.phone_number, body.code, body.first_name, body.last_name)
    return _auth_response(gateway, result, status_code=201)


@router.post("/auth/phone/verify", response_model=UserResponse)
def verify_user_phone(
    request: Request,
    body: VerifyUserPhoneRequest,
    principal: Principal = Depends(get_participant),
    rate_key: str = Depends(rate_limit_key),
) -> UserResponse:
    gateway = _gateway(request)
    user = gateway.verify_user_phone(rate_key, principal.subject_id, body.phone_number, body.code)
    return UserResponse.from_user(user, gateway.linked_providers(user.id))


# ---------------------------------------------------------------------------
# Third-party providers
# ---------------------------------------------------------------------------


@router.get("/auth/google/login")
async def google_login(request: Request, rate_key: str = Depends(rate_limit_key)):
    """Redirect to Google. authlib keeps the OAuth state in the session cookie."""
    gateway = _gateway(request)
    offered = await run_in_threadpool(gateway.providers, rate_key)
    enabled = {p["name"] for p in offered if p["enabled"]}
    if GOOGLE not in enabled:
        raise HTTPException(
            status_code=404,
            detail={"code": "provider_disabled", "message": "Google sign-in is not configured."},
        )
    client = request.app.state.oauth.create_client(GOOGLE)
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/callback", response_model=AuthResponse, name="google_callback")
async def google_callback(request: Request, rate_key: str = Depends(rate_limit_key)) -> JSONResponse:
    """Exchange the authorization code and sign the user in.

    The profile must carry a provider-verified email [H1]; the resolver then
    links it onto an existing account with the same email, if any.
    """
    gateway = _gateway(request)
    await run_in_threadpool(gateway.admit, rate_key)
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "provider_disabled", "message": "Google sign-in is not configured."},
        )
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        raise UnverifiedIdentity(f"Google token exchange failed: {exc.error}") from exc
    result = await run_in_threadpool(gateway.oauth_login, token, GOOGLE)
    return _auth_response(gateway, result)


@router.post("/auth/widget/login", response_model=AuthResponse)
def widget_login(request: Request, body: WidgetLoginRequest, rate_key: str = Depends(rate_limit_key)) -> JSONResponse:
    gateway = _gateway(request)
    result = gateway.widget_login(rate_key, body.model_dump())
    return _auth_response(gateway, result)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest | None = None, rate_key: str = Depends(rate_limit_key)) -> JSONResponse:
    """Exchange a refresh token (JSON body or cookie) for a new pair. Single use."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise Unauthorized("No refresh token supplied")
    pair = _gateway(request).refresh(rate_key, token)
    return token_response(TokenResponse.from_pair(pair).model_dump(), pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    principal: Principal = Depends(get_participant),
    rate_key: str = Depends(rate_limit_key),
) -> JSONResponse:
    """Revoke the stored refresh token and clear the cookie."""
    _gateway(request).logout(rate_key, principal.subject_id)
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(REFRESH_COOKIE, path=_COOKIE_PATH)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(
    request: Request,
    principal: Principal = Depends(get_participant),
    rate_key: str = Depends(rate_limit_key),
) -> UserResponse:
    """Return the currently authenticated participant."""
    gateway = _gateway(request)
    user = gateway.profile(rate_key, principal.subject_id)
    return UserResponse.from_user(user, gateway.linked_providers(user.id))


@router.get("/auth/providers", response_model=list[ProviderInfo])
def list_providers(request: Request, rate_key: str = Depends(rate_limit_key)) -> list[ProviderInfo]:
    """Return every sign-in method with its enabled flag.

    Public endpoint -- the login page calls this to decide which buttons to render.
    """
    return [ProviderInfo(**p) for p in _gateway(request).providers(rate_key)]
