"""
auth/errors.py -- Exception hierarchy for the authentication core.

Recoverable errors (DuplicateName, PasswordMismatch, AuthenticationRejected,
PrincipalNotFound) are caught by the HTTP layer and rendered as user-facing
messages. StoreUnavailable and EntropyExhausted signal infrastructure failure:
they propagate to the generic 500 handler (or abort startup) and are never
retried automatically.
"""

from __future__ import annotations

GENERIC_REJECTION = "Incorrect username or password."


class AuthError(Exception):
    """Base class for all authentication core errors."""


class DuplicateName(AuthError):
    """A principal with this name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f'Username "{name}" already exists. Choose another one.')
        self.name = name


class PasswordMismatch(AuthError):
    """Signup password and its confirmation differ."""

    def __init__(self) -> None:
        super().__init__("Passwords do not match. Please try again.")


class AuthenticationRejected(AuthError):
    """Credentials did not verify. The message never says which field was wrong."""

    def __init__(self, reason: str = GENERIC_REJECTION) -> None:
        super().__init__(reason)
        self.reason = reason


class PrincipalNotFound(AuthError):
    """A session referenced a principal id that no longer exists."""

    def __init__(self, principal_id: int) -> None:
        super().__init__(f"Principal {principal_id} not found.")
        self.principal_id = principal_id


class StoreUnavailable(AuthError):
    """The credential or session database could not be reached."""


class EntropyExhausted(AuthError):
    """The OS random source failed while generating a salt or session id."""


class SignupRejected(AuthError):
    """Signup input failed basic validation (blank name or password)."""
