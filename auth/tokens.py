"""
auth/tokens.py -- Password checks, RS256 token issuance and verification, cookies.

Security design decisions:
  JWT: python-jose with RS256 only. Tokens are signed with the RSA private
       key from the settings table and verified with the matching public key.
       Verification pins algorithms=["RS256"], so HS256 tokens forged with the
       public key as an HMAC secret and "none" tokens are rejected.

  Claims: exactly {id, email, name, groups, iat, exp, aud, iss}. aud and iss
       are both TOKEN_NAMESPACE ("urn:wiki.js") so Wiki.js accepts the token.
       Lifetime is one hour; issue_token() takes it as a keyword argument for
       callers that need something else.

  Passwords: bcrypt directly. _DUMMY_HASH enables timing equalization in
       authenticate_user() so response time does not reveal whether an email
       exists.

  Errors: unknown email and wrong password both raise InvalidCredentials
       (same message). Every verification failure raises
       InvalidOrExpiredToken; the real reason goes to the server log only.

  Keys: read from KeyStore on every call. Nothing is cached at module level,
       so a key rotation applies to the next request.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import jwt
from jose.exceptions import JOSEError

from auth.errors import AccountInactive, InvalidCredentials, InvalidOrExpiredToken, NoToken, SigningError
from auth.keys import load_signing_key
from auth.models import Claims, IssuedToken, KeyMaterial, User
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import KeyStore, UserStore

logger = logging.getLogger("authservice.auth")

ALGORITHM = "RS256"
TOKEN_NAMESPACE = "urn:wiki.js"
TOKEN_LIFETIME_SECONDS = 60 * 60
COOKIE_NAME = "jwt"

_CLAIM_NAMES = ("id", "email", "name", "groups", "iat", "exp", "aud", "iss")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


BCRYPT_MAX_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    """UTF-8 bytes of a password, cut to the 72 bytes bcrypt actually uses.

    Node bcrypt (Wiki.js) ignores everything past byte 72, and recent
    Python bcrypt releases raise instead. Truncating here keeps hashes from
    either side interchangeable.
    """
    return plain.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Cost factor 10 matches the hashes Wiki.js and the demo seed data use.
    """
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than a server error.
    """
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login for an unknown email is not
# measurably faster than a wrong password for a known one.
_DUMMY_HASH: str = hash_password("authservice_timing_dummy")


# ---------------------------------------------------------------------------
# Credential Verifier
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User:
    """Check an email/password pair. Returns the User or raises AuthenticationError.

    Order: lookup, active flag, password. An inactive account is reported as
    such -- knowing an account is disabled does not help guess its password.
    An unknown email still runs bcrypt against _DUMMY_HASH before failing.
    """
    user = store.get_local_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        raise InvalidCredentials("user not found")
    if not user.is_active:
        raise AccountInactive("user inactive")
    if not verify_password(password, user.hashed_password):
        raise InvalidCredentials("invalid password")
    return user


# ---------------------------------------------------------------------------
# Token Issuer
# ---------------------------------------------------------------------------


def build_claims(
    user: User,
    groups: list[int],
    now: int | None = None,
    lifetime: int = TOKEN_LIFETIME_SECONDS,
) -> Claims:
    iat = now if now is not None else int(datetime.now(timezone.utc).timestamp())
    return Claims(
        id=user.id,
        email=user.email,
        name=user.name,
        groups=[int(g) for g in groups],
        iat=iat,
        exp=iat + lifetime,
        aud=TOKEN_NAMESPACE,
        iss=TOKEN_NAMESPACE,
    )


def sign_claims(claims: Claims, material: KeyMaterial) -> str:
    """Sign a claim set with RS256. Raises SigningError on any key problem."""
    signing_key = load_signing_key(material)
    try:
        return jwt.encode(claims.to_payload(), signing_key, algorithm=ALGORITHM)
    except JOSEError as exc:
        raise SigningError(f"RS256 signing failed: {exc}") from exc


def issue_token(
    user_store: UserStore,
    key_store: KeyStore,
    email: str,
    password: str,
    lifetime: int = TOKEN_LIFETIME_SECONDS,
) -> IssuedToken:
    """Login: authenticate, resolve groups, and sign a token.

    Raises InvalidCredentials / AccountInactive for the caller, SigningError
    or KeyMaterialError when the stored keys are unusable. Never retried.
    """
    user = authenticate_user(user_store, email, password)
    groups = user_store.get_group_ids(user.id)
    claims = build_claims(user, groups, lifetime=lifetime)
    material = key_store.load_key_material()
    token = sign_claims(claims, material)
    return IssuedToken(token=token, claims=claims)


# ---------------------------------------------------------------------------
# Token Verifier
# ---------------------------------------------------------------------------


def decode_token(token: str, public_key: str) -> Claims:
    """Verify signature, algorithm, expiry, audience and issuer; return the claims.

    Raises InvalidOrExpiredToken for every failure. The specific reason is
    logged at INFO so operators can tell expiry from tampering.
    """
    try:
        payload = jwt.decode(
            token,
            public_key,
            algorithms=[ALGORITHM],
            audience=TOKEN_NAMESPACE,
            issuer=TOKEN_NAMESPACE,
        )
    except JOSEError as exc:
        logger.info("Token rejected: %s", exc)
        raise InvalidOrExpiredToken(str(exc)) from exc

    missing = [name for name in _CLAIM_NAMES if name not in payload]
    if missing:
        logger.info("Token rejected: missing claims %s", missing)
        raise InvalidOrExpiredToken(f"missing claims: {missing}")

    try:
        return Claims(
            id=payload["id"],
            email=payload["email"],
            name=payload["name"],
            groups=[int(g) for g in payload["groups"]],
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
            aud=payload["aud"],
            iss=payload["iss"],
        )
    except (TypeError, ValueError) as exc:
        logger.info("Token rejected: malformed claims (%s)", exc)
        raise InvalidOrExpiredToken(f"malformed claims: {exc}") from exc


def verify_token(key_store: KeyStore, token: str | None) -> Claims:
    """Verify: check a presented token against the current public key.

    No user lookup happens here. The signature is the only authority, so a
    user deactivated after login stays valid until the token expires.
    """
    if not token:
        raise NoToken()
    public_key = key_store.load_public_key()
    return decode_token(token, public_key)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str) -> None:
    """Write the token as the `jwt` cookie on the response.

    httponly=True: unconditional -- JavaScript must never read the token.
    samesite="lax": sent on same-site requests and top-level navigations,
        not on cross-site POST.
    secure / domain: deployment settings (SECURE_COOKIES, COOKIE_DOMAIN).
    max_age: matches the token lifetime so both expire together.
    """
    settings = get_settings()
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        max_age=TOKEN_LIFETIME_SECONDS,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.secure_cookies,
        httponly=True,
        samesite="lax",
    )


def clear_auth_cookie(response) -> None:
    """Expire the `jwt` cookie. Attributes must match set_auth_cookie or browsers keep it."""
    settings = get_settings()
    response.delete_cookie(
        COOKIE_NAME,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.secure_cookies,
        httponly=True,
        samesite="lax",
    )
