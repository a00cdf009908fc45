"""
api/routes/v1/admin.py -- Operator (admin panel) authentication endpoints.

Routes:
  POST /api/v1/admin/auth/sign-up          -- create an operator; first one bootstraps the creator
  GET  /api/v1/admin/auth/activate/{link}  -- single-use activation link from the sign-up mail
  POST /api/v1/admin/auth/sign-in          -- email + password; issues an operator token pair
  POST /api/v1/admin/auth/refresh          -- rotate the refresh token (body or cookie)
  POST /api/v1/admin/auth/sign-out         -- revoke the refresh token (requires operator)
  POST /api/v1/admin/auth/password         -- change password; ends every session (requires operator)
  GET  /api/v1/admin/auth/me               -- current operator (requires operator)
  GET  /api/v1/admin/auth/permissions      -- effective permissions of the current operator

Operator tokens carry aud=operator and are never accepted on participant
routes, nor participant tokens here.

Security:
  [H2] sign-in and sign-up share the tighter SIGN_IN_RATE_LIMIT budget.
  [C1] PasswordVerifier provides timing equalization -- the gateway uses it, never inline.
  [M5] Cache-Control: no-store on token responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    AdminAuthResponse,
    AdminResponse,
    AdminSignInRequest,
    AdminSignUpRequest,
    MessageResponse,
    PasswordChangeRequest,
    PermissionsResponse,
    RefreshRequest,
    TokenResponse,
)
from api.routes.v1.auth import token_response
from auth.admin_store import effective_role
from auth.dependencies import get_operator, rate_limit_key, try_get_principal
from auth.errors import Unauthorized
from auth.gateway import AuthGateway
from auth.models import Principal
from auth.permissions import ADMIN_OPERATIONS, is_operation_allowed, parse_admin_role, permissions_for

# Auth policy:
# - sign-up: public for the very first operator, afterwards requires admins.create
# - activate, sign-in, refresh: public
# - sign-out, password, me, permissions: operator access token (get_operator)
router = APIRouter()

ADMIN_REFRESH_COOKIE = "admin_refresh_token"
_COOKIE_PATH = "/api/v1/admin/auth"


def _gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def _admin_token_response(content: dict, pair) -> JSONResponse:
    return token_response(content, pair, name=ADMIN_REFRESH_COOKIE, path=_COOKIE_PATH)


@router.post("/admin/auth/sign-up", response_model=AdminResponse, status_code=201)
def sign_up(request: Request, body: AdminSignUpRequest, rate_key: str = Depends(rate_limit_key)) -> AdminResponse:
    """Create an inactive operator and mail the activation link.

    The caller's operator token is read softly: absent is fine while no
    operator exists yet, and the gateway decides what it is allowed to do.
    """
    actor = try_get_principal(request)
    admin = _gateway(request).admin_sign_up(rate_key, body.email, body.password, body.role, actor=actor)
    return AdminResponse.from_admin(admin, effective_role(admin))


@router.get("/admin/auth/activate/{link}", response_model=AdminResponse)
def activate(request: Request, link: str, rate_key: str = Depends(rate_limit_key)) -> AdminResponse:
    admin = _gateway(request).admin_activate(rate_key, link)
    return AdminResponse.from_admin(admin, effective_role(admin))


@router.post("/admin/auth/sign-in", response_model=AdminAuthResponse)
def sign_in(request: Request, body: AdminSignInRequest, rate_key: str = Depends(rate_limit_key)) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and a not-yet-activated account all come
    back as the same invalid_credentials error.
    """
    result = _gateway(request).admin_sign_in(rate_key, body.email, body.password)
    pair = result.tokens
    content = AdminAuthResponse(
        **TokenResponse.from_pair(pair).model_dump(),
        admin=AdminResponse.from_admin(result.admin, effective_role(result.admin)),
    )
    return _admin_token_response(content.model_dump(), pair)


@router.post("/admin/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest | None = None, rate_key: str = Depends(rate_limit_key)) -> JSONResponse:
    token = (body.refresh_token if body else None) or request.cookies.get(ADMIN_REFRESH_COOKIE)
    if not token:
        raise Unauthorized("No operator refresh token supplied")
    pair = _gateway(request).admin_refresh(rate_key, token)
    return _admin_token_response(TokenResponse.from_pair(pair).model_dump(), pair)


@router.post("/admin/auth/sign-out", response_model=MessageResponse)
def sign_out(
    request: Request,
    principal: Principal = Depends(get_operator),
    rate_key: str = Depends(rate_limit_key),
) -> JSONResponse:
    _gateway(request).admin_sign_out(rate_key, principal.subject_id)
    resp = JSONResponse(content={"message": "Signed out."})
    resp.delete_cookie(ADMIN_REFRESH_COOKIE, path=_COOKIE_PATH)
    return resp


@router.post("/admin/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    principal: Principal = Depends(get_operator),
    rate_key: str = Depends(rate_limit_key),
) -> JSONResponse:
    """Change the password. The stored refresh token is revoked; sign in again."""
    _gateway(request).admin_change_password(rate_key, principal.subject_id, body.current_password, body.new_password)
    resp = JSONResponse(content={"message": "Password changed. Please sign in again."})
    resp.delete_cookie(ADMIN_REFRESH_COOKIE, path=_COOKIE_PATH)
    return resp


@router.get("/admin/auth/me", response_model=AdminResponse)
def me(
    request: Request,
    principal: Principal = Depends(get_operator),
    rate_key: str = Depends(rate_limit_key),
) -> AdminResponse:
    admin = _gateway(request).admin_profile(rate_key, principal.subject_id)
    return AdminResponse.from_admin(admin, effective_role(admin))


@router.get("/admin/auth/permissions", response_model=PermissionsResponse)
def permissions(
    request: Request,
    principal: Principal = Depends(get_operator),
    rate_key: str = Depends(rate_limit_key),
) -> PermissionsResponse:
    """Effective permissions and allowed operations, for rendering the admin panel."""
    admin = _gateway(request).admin_profile(rate_key, principal.subject_id)
    role = parse_admin_role(effective_role(admin))
    return PermissionsResponse(
        role=effective_role(admin),
        permissions=sorted(p.value for p in permissions_for(role)),
        operations=sorted(op for op in ADMIN_OPERATIONS if is_operation_allowed(role, op)),
    )
