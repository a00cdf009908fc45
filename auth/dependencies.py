"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens travel in the Authorization: Bearer <token> header only. Each
token names its audience (participant | operator) and is checked against the
audience the route expects:

  get_participant()  -- participant routes; 401 without a valid token
  get_operator()     -- operator routes
  require_admin_operation(op) / require_participant_operation(op)
                     -- permission gates built on auth.permissions

A genuine token presented to the other audience's routes is rejected with 403
(Forbidden), a missing or broken one with 401 (Unauthorized). Either rejection
consults the limiter first, so unauthenticated floods still end in 429.
The two role hierarchies never satisfy each other's gates.

rate_limit_key() builds the limiter key for the Auth Gateway from the client
address, the (soft-decoded) caller, the HTTP method and the route template.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request/Depends) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import Forbidden, Unauthorized
from auth.models import Audience, Principal
from auth.permissions import is_operation_allowed, parse_admin_role, parse_participant_role
from auth.ratelimit import rate_key


def _bearer(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def _other(audience: Audience) -> Audience:
    return Audience.OPERATOR if audience is Audience.PARTICIPANT else Audience.PARTICIPANT


def _verify(request: Request, audience: Audience) -> Principal:
    token = _bearer(request)
    if token is None:
        raise Unauthorized("No bearer token")
    tokens = request.app.state.gateway.tokens
    try:
        return tokens.verify_access(token, audience)
    except Unauthorized:
        try:
            tokens.verify_access(token, _other(audience))
        except Unauthorized:
            raise
        raise Forbidden(f"{_other(audience).value} token presented to a {audience.value} route") from None


def _principal(request: Request, audience: Audience) -> Principal:
    """Verified principal for audience. A rejected request still counts against the limiter.

    Accepted requests are counted by the gateway operation they go on to call,
    so each request is charged exactly once and a flood of bad tokens ends in
    429 rather than an endless run of 401s.
    """
    try:
        return _verify(request, audience)
    except (Unauthorized, Forbidden):
        request.app.state.gateway.admit(rate_limit_key(request))
        raise


def try_get_principal(request: Request) -> Principal | None:
    """Decode the bearer token for either audience. Never raises."""
    token = _bearer(request)
    if token is None:
        return None
    tokens = request.app.state.gateway.tokens
    for audience in Audience:
        try:
            return tokens.verify_access(token, audience)
        except Unauthorized:
            continue
    return None


def get_participant(request: Request) -> Principal:
    """Require a participant access token.

    Use as a FastAPI dependency:
        @router.get("/auth/me")
        def me(principal: Principal = Depends(get_participant)): ...
    """
    return _principal(request, Audience.PARTICIPANT)


def get_operator(request: Request) -> Principal:
    """Require an operator access token."""
    return _principal(request, Audience.OPERATOR)


def require_admin_operation(operation: str) -> Callable[[Request], Principal]:
    """Dependency factory: operator token whose role allows operation."""

    def dependency(request: Request) -> Principal:
        principal = get_operator(request)
        if not is_operation_allowed(parse_admin_role(principal.role), operation):
            raise Forbidden(f"Operator {principal.subject_id} ({principal.role}) denied {operation}")
        return principal

    return dependency


def require_participant_operation(operation: str) -> Callable[[Request], Principal]:
    """Dependency factory: participant token whose role allows operation."""

    def dependency(request: Request) -> Principal:
        principal = get_participant(request)
        if not is_operation_allowed(parse_participant_role(principal.role), operation):
            raise Forbidden(f"User {principal.subject_id} ({principal.role}) denied {operation}")
        return principal

    return dependency


def rate_limit_key(request: Request) -> str:
    """Limiter key for this request. The route template keeps /activate/{link} as one bucket."""
    route = request.scope.get("route")
    template = getattr(route, "path", None) or request.url.path
    principal = try_get_principal(request)
    caller = f"{principal.audience.value}-{principal.subject_id}" if principal else None
    address = request.client.host if request.client else None
    return rate_key(address, caller, request.method, template)
