"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Every response carries `success`; verify responses also carry
`authenticated`. Clients written against the Wiki.js auth service read
exactly these fields.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

MAX_CREDENTIAL_LENGTH = 255

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/login.

    Both fields are Optional at the schema level so a missing field reaches
    the route and gets the documented 400 "Email and password required"
    instead of FastAPI's generic 422. Length is checked in the route too:
    an oversized value is a failed login (401), not a missing field.
    """

    email: Optional[str] = None
    # Passwords are compared byte for byte, so no whitespace stripping here.
    password: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    groups: list[int]


class LoginResponse(BaseModel):
    success: bool = True
    message: str = "Login successful"
    user: UserInfo


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Logout successful"


class VerifyResponse(BaseModel):
    success: bool = True
    authenticated: bool = True
    user: UserInfo


class ErrorResponse(BaseModel):
    success: bool = False
    message: str


class TokenErrorResponse(BaseModel):
    success: bool = False
    authenticated: bool = False
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
