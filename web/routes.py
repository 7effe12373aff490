"""
web/routes.py -- Jinja2 template routes for the catalog web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same authenticator, session manager and stores) but return HTML and
redirects instead of JSON.

Routes:
  GET  /               -- redirect to /catalog or /users/login
  GET  /catalog        -- landing page (auth required)
  GET  /users/logout   -- destroy session, redirect /users/login
  GET  /users/login    -- sign-in form, shows the queued flash message once
  POST /users/login    -- handle password login
  GET  /users/signup   -- sign-up form
  POST /users/signup   -- create principal, queue message, redirect /users/login

Signed-in users are redirected away from the login and signup pages.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter, login_rate_limit
from auth.authenticator import Authenticator, register
from auth.dependencies import (
    clear_session_cookie,
    get_session_id,
    set_session_cookie,
    try_get_current_principal,
)
from auth.errors import DuplicateName, PasswordMismatch, SignupRejected
from auth.session import SessionManager

logger = logging.getLogger("catalog.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Expose try_get_current_principal as a Jinja2 global so layout.html can show
# the signed-in name without every handler passing it explicitly.
templates.env.globals["try_get_current_principal"] = try_get_current_principal
router = APIRouter()

_LOGIN_URL = "/users/login"
_HOME_URL = "/catalog"
_SIGNUP_DONE_MESSAGE = "Please sign in with your new account."


def _require_auth(request: Request) -> Optional[RedirectResponse]:
    """Return a RedirectResponse to the login page if anonymous, None if OK.

    Call at the top of protected route handlers:
        if redirect := _require_auth(request):
            return redirect
    """
    if try_get_current_principal(request) is None:
        return RedirectResponse(_LOGIN_URL, status_code=302)
    return None


def _redirect_if_signed_in(request: Request) -> Optional[RedirectResponse]:
    if try_get_current_principal(request) is not None:
        return RedirectResponse(_HOME_URL, status_code=302)
    return None


# ---------------------------------------------------------------------------
# Landing
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> RedirectResponse:
    target = _HOME_URL if try_get_current_principal(request) is not None else _LOGIN_URL
    return RedirectResponse(target, status_code=302)


@router.get("/catalog", response_class=HTMLResponse)
def catalog_home(request: Request) -> HTMLResponse:
    if redirect := _require_auth(request):
        return redirect
    return templates.TemplateResponse(
        request,
        "catalog.html",
        {"title": "Catalog", "principal": try_get_current_principal(request)},
    )


# ---------------------------------------------------------------------------
# Logout -- registered before the signed-in guard applies to /users/* pages
# ---------------------------------------------------------------------------


@router.get("/users/logout")
async def logout(request: Request) -> RedirectResponse:
    """Destroy the session before responding, then redirect to the login page."""
    manager: SessionManager = request.app.state.session_manager
    await manager.logout(get_session_id(request))
    resp = RedirectResponse(_LOGIN_URL, status_code=302)
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.get("/users/login", response_class=HTMLResponse)
async def login_form(request: Request) -> HTMLResponse:
    """Render the sign-in page. The flash message is consumed on display."""
    if redirect := _redirect_if_signed_in(request):
        return redirect
    manager: SessionManager = request.app.state.session_manager
    message = await manager.pop_message(get_session_id(request))
    return templates.TemplateResponse(request, "signin.html", {"title": "Sign in", "message": message})


@limiter.limit(login_rate_limit)
@router.post("/users/login", response_class=HTMLResponse)
async def login_post(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
) -> RedirectResponse:
    """Handle the sign-in form.

    On rejection the generic reason is queued as a flash message and the user
    lands back on the form; the reason never says which field was wrong.
    """
    if redirect := _redirect_if_signed_in(request):
        return redirect
    authenticator: Authenticator = request.app.state.authenticator
    manager: SessionManager = request.app.state.session_manager

    result = await authenticator.verify(username, password)
    if not result.accepted:
        sid = await manager.flash(get_session_id(request), result.reason)
        resp = RedirectResponse(_LOGIN_URL, status_code=302)
        set_session_cookie(resp, manager, sid)
        return resp

    sid = await manager.login(get_session_id(request), result.principal)
    resp = RedirectResponse(_HOME_URL, status_code=302)
    set_session_cookie(resp, manager, sid)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


@router.get("/users/signup", response_class=HTMLResponse)
def signup_form(request: Request) -> HTMLResponse:
    if redirect := _redirect_if_signed_in(request):
        return redirect
    return templates.TemplateResponse(request, "signup.html", {"title": "Sign up"})


@router.post("/users/signup", response_class=HTMLResponse)
async def signup_post(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    password_confirmed: str = Form(""),
) -> HTMLResponse:
    """Create a principal, or re-render the form with the reason it failed."""
    if redirect := _redirect_if_signed_in(request):
        return redirect
    try:
        await register(request.app.state.credential_store, username, password, password_confirmed)
    except (DuplicateName, PasswordMismatch, SignupRejected) as exc:
        return templates.TemplateResponse(
            request,
            "signup.html",
            {"title": "Sign up", "message": str(exc), "username": username},
        )

    manager: SessionManager = request.app.state.session_manager
    sid = await manager.flash(get_session_id(request), _SIGNUP_DONE_MESSAGE)
    resp = RedirectResponse(_LOGIN_URL, status_code=302)
    set_session_cookie(resp, manager, sid)
    return resp
