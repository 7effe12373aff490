"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login    -- password login; sets session cookie
  POST /api/v1/auth/logout   -- destroys the session; clears cookie (GET also accepted)
  POST /api/v1/auth/signup   -- register a new principal
  GET  /api/v1/auth/me       -- current principal (requires auth)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  Authenticator.verify() provides timing equalization -- use it, never inline
  find_by_name() + verify().
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, MessageResponse, PrincipalResponse, SignupRequest, SignupResponse
from auth.authenticator import Authenticator, register
from auth.dependencies import (
    clear_session_cookie,
    get_current_principal,
    get_session_id,
    set_session_cookie,
)
from auth.errors import AuthenticationRejected, DuplicateName, PasswordMismatch, SignupRejected
from auth.models import PrincipalView
from auth.session import SessionManager

# Auth policy:
# - POST /api/v1/auth/login:   public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:  public -- clearing a session needs no prior auth
# - POST /api/v1/auth/signup:  public
# - GET  /api/v1/auth/me:      requires auth (get_current_principal)
router = APIRouter()


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=PrincipalResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Returns the same generic error for wrong username and wrong password
    ("bad_credentials") to avoid leaking username existence information.
    """
    authenticator: Authenticator = request.app.state.authenticator
    manager: SessionManager = request.app.state.session_manager

    result = await authenticator.verify(body.username, body.password)
    try:
        principal = result.unwrap()
    except AuthenticationRejected as exc:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": exc.reason}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    sid = await manager.login(get_session_id(request), principal)
    view = PrincipalView(name=principal.name, role=manager.role)
    resp = JSONResponse(status_code=200, content=PrincipalResponse.from_view(view).model_dump())
    set_session_cookie(resp, manager, sid)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.api_route("/auth/logout", methods=["GET", "POST"], response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Destroy the server-side session, then clear the cookie."""
    manager: SessionManager = request.app.state.session_manager
    await manager.logout(get_session_id(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
async def signup(request: Request, body: SignupRequest) -> SignupResponse:
    """Register a new principal.

    409 when the username is taken, 400 when the passwords differ. Name taken
    is reported first, matching the HTML signup form.
    """
    try:
        principal = await register(
            request.app.state.credential_store,
            body.username,
            body.password,
            body.password_confirmed,
        )
    except DuplicateName as exc:
        raise HTTPException(status_code=409, detail={"code": "duplicate_name", "message": str(exc)}) from exc
    except PasswordMismatch as exc:
        raise HTTPException(status_code=400, detail={"code": "password_mismatch", "message": str(exc)}) from exc
    except SignupRejected as exc:
        raise HTTPException(status_code=400, detail={"code": "invalid_signup", "message": str(exc)}) from exc
    return SignupResponse(id=principal.id, username=principal.name)


@router.get("/auth/me", response_model=PrincipalResponse)
async def me(principal: PrincipalView = Depends(get_current_principal)) -> PrincipalResponse:
    """Return identity information for the currently signed-in principal."""
    return PrincipalResponse.from_view(principal)
