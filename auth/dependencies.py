"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is taken from, in priority order:
  1. Authorization: Bearer <token> header -- API clients and the SPA.
  2. "jwt" cookie -- set by every login/signup response.

Either way the fingerprint comes from the httpOnly "fgp" cookie. A bearer
token replayed from another browser has no fingerprint and is rejected.

_resolve_user() does the work and reports why a request failed.
try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises HTTP 401 with a failure-specific code.
restrict_to(*roles) wraps get_current_user() and raises HTTP 403.

Layer rule: no imports from api/ or catalog/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import FINGERPRINT_COOKIE, JWT_COOKIE, decode_access_token, password_changed_after

_FAILURES: dict[str, str] = {
    "not_logged_in": "You are not logged in! Please log in to get access.",
    "invalid_token": "Invalid or expired session. Please log in again.",
    "user_gone": "The user belonging to this token no longer exists.",
    "password_changed": "User recently changed password! Please log in again.",
}


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(JWT_COOKIE) or None


def _resolve_user(request: Request) -> tuple[User | None, str | None]:
    """Return (user, None) on success or (None, failure_code)."""
    token = _extract_token(request)
    if not token:
        return None, "not_logged_in"

    payload = decode_access_token(token, request.cookies.get(FINGERPRINT_COOKIE))
    if payload is None:
        return None, "invalid_token"

    user = request.app.state.user_store.get_by_id(payload["id"])
    if user is None or not user.is_active:
        return None, "user_gone"

    if password_changed_after(user, payload["iat"]):
        return None, "password_changed"

    request.state.user = user
    return user, None


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request if possible. Never raises."""
    user, _ = _resolve_user(request)
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user, failure = _resolve_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": failure, "message": _FAILURES[failure]},
        )
    return user


def restrict_to(*roles: str) -> Callable[[Request], User]:
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.post("/products", dependencies=[Depends(restrict_to("admin", "lead-guide"))])
    """

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role not in roles:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "You do not have permission to perform this action."},
            )
        return user

    return dependency
