"""
api/routes/auth.py -- Session boundary: login, logout, verify.

Routes:
  POST /api/login   -- password login; sets the jwt cookie
  POST /api/logout  -- clears the jwt cookie; always 200
  GET  /api/verify  -- validates the jwt cookie; 200 or 401

There is no server-side session. login hands out a signed cookie, verify is
a pure function of that cookie, and logout only tells the browser to drop it.
A copied token stays valid until it expires.

Security:
  Login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  authenticate_user() provides timing equalization -- never inline the lookup.
  Unknown email and wrong password produce byte-identical 401 bodies.
  Cache-Control: no-store on every login response.

Errors raised here (auth/errors.py) are rendered by the handlers in
api/main.py; routes only log and re-raise.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import MAX_CREDENTIAL_LENGTH, LoginRequest, LoginResponse, LogoutResponse, UserInfo, VerifyResponse
from auth.dependencies import get_current_claims
from auth.errors import AuthenticationError, InvalidCredentials, ValidationError
from auth.models import Claims
from auth.store import KeyStore, UserStore
from auth.tokens import clear_auth_cookie, issue_token, set_auth_cookie
from core.config import get_settings

logger = logging.getLogger("authservice.api")

# Auth policy:
# - POST /api/login:   public -- login endpoint must be unauthenticated
# - POST /api/logout:  public -- clearing a cookie needs no prior auth
# - GET  /api/verify:  public -- answers "who am I" from the cookie alone
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


@router.post("/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the jwt cookie.

    Plain `def`: bcrypt and the database calls block, so FastAPI runs this on
    its thread pool and the event loop keeps serving other requests.
    """
    email = (body.email or "").strip()
    if not email or not body.password:
        logger.info("Login denied: missing credentials")
        raise ValidationError("missing email or password")
    if len(email) > MAX_CREDENTIAL_LENGTH or len(body.password) > MAX_CREDENTIAL_LENGTH:
        logger.info("Login denied: credential longer than %d characters", MAX_CREDENTIAL_LENGTH)
        raise InvalidCredentials("credential too long")

    user_store: UserStore = request.app.state.user_store
    key_store: KeyStore = request.app.state.key_store

    try:
        issued = issue_token(user_store, key_store, email, body.password)
    except AuthenticationError as exc:
        logger.info("Login denied for %s (%s)", email, exc.detail)
        raise

    claims = issued.claims
    logger.info("Login success for %s (id=%s, groups=%s)", claims.email, claims.id, claims.groups or "none")

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user=UserInfo(**claims.user_info())).model_dump(),
    )
    set_auth_cookie(resp, issued.token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout", response_model=LogoutResponse)
async def logout() -> JSONResponse:
    """Clear the jwt cookie. Succeeds whether or not the caller had a valid token."""
    resp = JSONResponse(content=LogoutResponse().model_dump())
    clear_auth_cookie(resp)
    logger.info("Logout")
    return resp


@router.get("/verify", response_model=VerifyResponse)
def verify(claims: Claims = Depends(get_current_claims)) -> VerifyResponse:
    """Return the identity embedded in a valid jwt cookie.

    get_current_claims raises NoToken / InvalidOrExpiredToken, which the
    TokenError handler renders as 401 {success: false, authenticated: false}.
    """
    return VerifyResponse(user=UserInfo(**claims.user_info()))
