"""
API request and response models for the catalog REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import PrincipalView

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Authenticator.verify() strips username whitespace, as signup does; the
    password is taken verbatim.
    max_length keeps oversized inputs away from the KDF.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    password_confirmed: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PrincipalResponse(BaseModel):
    """The signed-in principal as seen by the client (name and role only)."""

    model_config = ConfigDict(frozen=True)

    username: str
    role: str

    @classmethod
    def from_view(cls, view: PrincipalView) -> "PrincipalResponse":
        return cls(username=view.name, role=view.role)


class SignupResponse(BaseModel):
    """Response for POST /api/v1/auth/signup."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    message: str = "Please sign in with your new account."


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
