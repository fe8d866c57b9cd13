"""
auth/dependencies.py -- FastAPI Depends() helpers for token authentication.

The token is read from the `jwt` cookie only. The browser holds it as an
HttpOnly cookie; there is no Authorization header path and no API keys.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() raises TokenError, which api/main.py turns into a 401.
require_group() builds a dependency that additionally checks group membership
using only the group IDs inside the token -- no database lookup.

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from typing import Callable

from fastapi import HTTPException, Request

from auth.errors import TokenError
from auth.models import Claims
from auth.tokens import COOKIE_NAME, verify_token


def get_current_claims(request: Request) -> Claims:
    """Require a valid token. Raises NoToken / InvalidOrExpiredToken otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: Claims = Depends(get_current_claims)): ...
    """
    return verify_token(request.app.state.key_store, request.cookies.get(COOKIE_NAME))


def try_get_current_claims(request: Request) -> Claims | None:
    """Return the verified claims, or None if the request carries no valid token."""
    try:
        return get_current_claims(request)
    except TokenError:
        return None


def require_group(group_id: int) -> Callable[[Request], Claims]:
    """Dependency factory: 401 without a valid token, 403 without membership.

        @router.get("/admin")
        def route(claims: Claims = Depends(require_group(1))): ...
    """

    def dependency(request: Request) -> Claims:
        claims = get_current_claims(request)
        if group_id not in claims.groups:
            raise HTTPException(status_code=403, detail="Forbidden")
        return claims

    return dependency
