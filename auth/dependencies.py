"""
auth/dependencies.py -- FastAPI glue for the session identity lifecycle.

load_session() is called once per request by the HTTP middleware in
api/main.py. It unsigns the session cookie and resolves it to a
PrincipalView, storing both on request.state:

  request.state.sid        session id from a valid cookie, or None
  request.state.principal  PrincipalView, or None for Anonymous

try_get_current_principal() is the soft variant (returns None).
get_current_principal() wraps it and raises HTTP 401 if anonymous.

Layer rule: no imports from web/ or api/.
  auth/dependencies.py may import from fastapi (for Request/HTTPException)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import PrincipalView
from auth.session import SessionManager
from core.config import get_settings


async def load_session(request: Request) -> None:
    """Populate request.state.sid and request.state.principal from the cookie."""
    manager: SessionManager = request.app.state.session_manager
    cookie = request.cookies.get(get_settings().session_cookie_name)
    sid = manager.unsign(cookie)
    request.state.sid = sid
    request.state.principal = await manager.current_principal(sid)


def get_session_id(request: Request) -> str | None:
    return getattr(request.state, "sid", None)


def try_get_current_principal(request: Request) -> PrincipalView | None:
    """Return the signed-in principal for this request, or None. Never raises."""
    return getattr(request.state, "principal", None)


def get_current_principal(request: Request) -> PrincipalView:
    """Require authentication. Raises HTTP 401 if the request is anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: PrincipalView = Depends(get_current_principal)): ...
    """
    principal = try_get_current_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return principal


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, manager: SessionManager, sid: str) -> None:
    """Write the signed session id as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the session store TTL so both expire together.
    """
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value=manager.sign(sid),
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=manager.max_age,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(get_settings().session_cookie_name)
