"""
auth/errors.py -- Error taxonomy for login, verification, and key handling.

Every error carries the HTTP status and the exact client-facing message, so
the exception handlers in api/main.py stay a flat mapping and no route can
accidentally leak a more specific message.

Anti-enumeration: InvalidCredentials is raised both for an unknown email and
for a wrong password. Its message must stay identical for both cases.

Token errors collapse to one message. "Expired" and "tampered" are not told
apart for the caller; the reason is logged server-side only.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthServiceError(Exception):
    """Base class. `message` is safe to show to clients; `detail` is not."""

    status_code: int = 500
    code: str = "server_error"
    message: str = "Server error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail


class ValidationError(AuthServiceError):
    status_code = 400
    code = "validation_error"
    message = "Email and password required"


class AuthenticationError(AuthServiceError):
    status_code = 401
    code = "authentication_failed"
    message = "Authentication failed"


class InvalidCredentials(AuthenticationError):
    code = "invalid_credentials"
    message = "Invalid email or password"


class AccountInactive(AuthenticationError):
    code = "account_inactive"
    message = "Account is inactive"


class TokenError(AuthServiceError):
    status_code = 401
    code = "invalid_token"
    message = "Invalid or expired token"


class NoToken(TokenError):
    code = "no_token"
    message = "No token found"


class InvalidOrExpiredToken(TokenError):
    pass


class KeyMaterialError(AuthServiceError):
    """Stored certs/sessionSecret missing or unusable. Fatal at startup."""

    code = "key_material_error"


class SigningError(AuthServiceError):
    """Private key could not be decrypted or used to sign."""

    code = "signing_error"
