"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (data containers with no I/O). Dataclasses own the
domain shape; stores and the session manager do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.errors import GENERIC_REJECTION, AuthenticationRejected


@dataclass
class Principal:
    """A registered identity with its stored salt and password hash.

    salt is generated once at creation and never changes. hash is the
    hex-encoded KDF output for (password, salt). Neither value ever leaves
    the auth core -- the session stores only the id.
    """

    name: str
    salt: str  # hex, fixed width
    hash: str  # hex, KDF output
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class SessionToken:
    """Minimal reference to a Principal, held in the session store.

    Only the id is persisted so session storage never carries secrets or
    profile fields that could drift from the credential store.
    """

    principal_id: int

    def to_session(self) -> dict:
        return {"id": self.principal_id}

    @classmethod
    def from_session(cls, data: object) -> SessionToken | None:
        """Parse the session payload form. Returns None for anything malformed."""
        if not isinstance(data, dict):
            return None
        raw = data.get("id")
        if isinstance(raw, bool) or not isinstance(raw, int):
            return None
        return cls(principal_id=raw)


@dataclass(frozen=True)
class PrincipalView:
    """Request-scoped projection of the signed-in principal.

    Rebuilt on every request from the SessionToken; never persisted.
    """

    name: str
    role: str


@dataclass(frozen=True)
class VerifyResult:
    """Outcome of Authenticator.verify().

    Exactly one of principal / reason is set. reason is always the generic
    rejection message so callers cannot tell an unknown name from a wrong
    password.
    """

    principal: Principal | None = None
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.principal is not None

    def unwrap(self) -> Principal:
        """Return the accepted principal or raise AuthenticationRejected."""
        if self.principal is None:
            raise AuthenticationRejected(self.reason or GENERIC_REJECTION)
        return self.principal
