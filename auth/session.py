"""
auth/session.py -- Session identity lifecycle: login, logout, serialize/deserialize.

State per browser session:
  Anonymous      no SessionToken in the session payload (or no session at all)
  Authenticated  payload["principal"] holds a SessionToken; every request
                 rebuilds a PrincipalView from it via CredentialStore.find_by_id
  Logout         clear() deletes the row; the old cookie now resolves to nothing

serialize() and deserialize() are plain functions on SessionManager, called
explicitly by the HTTP middleware -- there are no registered callbacks.

Cookie format:
  The cookie carries only a random session id, signed with itsdangerous
  URLSafeTimedSerializer (SECRET_KEY, max_age = session TTL). A tampered or
  expired signature reads as Anonymous. The payload stays server-side.

Session fixation:
  login() always discards the pre-login session and issues a fresh id, so an
  id planted before authentication is never promoted to an authenticated one.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import secrets

from itsdangerous import BadData, URLSafeTimedSerializer
from starlette.concurrency import run_in_threadpool

from auth.errors import EntropyExhausted, PrincipalNotFound
from auth.models import Principal, PrincipalView, SessionToken
from auth.sessions import SessionStore
from auth.store import CredentialStore

logger = logging.getLogger("catalog.auth.session")

_PRINCIPAL_KEY = "principal"
_MESSAGE_KEY = "message"


def new_session_id() -> str:
    try:
        return secrets.token_urlsafe(32)
    except (OSError, NotImplementedError) as exc:
        raise EntropyExhausted("OS random source unavailable") from exc


class SessionManager:
    """Maps authenticated principals to session tokens and back.

    Usage:
        manager = SessionManager(sessions, credentials, secret_key=key)
        sid = await manager.login(None, principal)
        cookie = manager.sign(sid)
        ...
        view = await manager.current_principal(manager.unsign(cookie))
        await manager.logout(sid)
    """

    def __init__(
        self,
        sessions: SessionStore,
        credentials: CredentialStore,
        secret_key: str,
        role: str = "editor",
        max_age: int | None = None,
    ) -> None:
        self.sessions = sessions
        self.credentials = credentials
        self.role = role
        self.max_age = max_age if max_age is not None else sessions.ttl
        self._serializer = URLSafeTimedSerializer(secret_key=secret_key, salt="catalog.session.v1")

    # ------------------------------------------------------------------
    # Cookie signing
    # ------------------------------------------------------------------

    def sign(self, sid: str) -> str:
        return self._serializer.dumps(sid)

    def unsign(self, cookie: str | None) -> str | None:
        """Return the session id from a signed cookie value, or None if invalid/expired."""
        if not cookie:
            return None
        try:
            sid = self._serializer.loads(cookie, max_age=self.max_age)
        except BadData:
            return None
        return sid if isinstance(sid, str) and sid else None

    # ------------------------------------------------------------------
    # Serialize / deserialize
    # ------------------------------------------------------------------

    def serialize(self, principal: Principal) -> SessionToken:
        """Reduce a principal to the token persisted in the session (id only)."""
        if principal.id is None:
            raise ValueError("cannot serialize an unsaved principal")
        return SessionToken(principal_id=principal.id)

    async def deserialize(self, token: SessionToken) -> PrincipalView | None:
        """Rebuild the request-scoped view. A deleted principal yields None (Anonymous)."""
        try:
            principal = await run_in_threadpool(self._load_principal, token)
        except PrincipalNotFound as exc:
            logger.warning("Stale session: %s", exc)
            return None
        return PrincipalView(name=principal.name, role=self.role)

    def _load_principal(self, token: SessionToken) -> Principal:
        principal = self.credentials.find_by_id(token.principal_id)
        if principal is None:
            raise PrincipalNotFound(token.principal_id)
        return principal

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def current_principal(self, sid: str | None) -> PrincipalView | None:
        """Resolve a session id to the signed-in principal, or None for Anonymous."""
        if not sid:
            return None
        data = await run_in_threadpool(self.sessions.get, sid)
        if data is None:
            return None
        token = SessionToken.from_session(data.get(_PRINCIPAL_KEY))
        if token is None:
            return None
        view = await self.deserialize(token)
        if view is None:
            # Drop the dangling token so later requests skip the lookup.
            data.pop(_PRINCIPAL_KEY, None)
            await run_in_threadpool(self._write, sid, data)
        return view

    async def login(self, sid: str | None, principal: Principal) -> str:
        """Establish an authenticated session and return its (new) session id.

        The previous session, if any, is discarded. The new row is written in a
        single insert, so an aborted request leaves either no session or a
        complete one.
        """
        token = self.serialize(principal)
        new_sid = new_session_id()
        if sid:
            await run_in_threadpool(self.sessions.clear, sid)
        await run_in_threadpool(self.sessions.set, new_sid, {_PRINCIPAL_KEY: token.to_session()})
        logger.info("Session established for principal id=%s", token.principal_id)
        return new_sid

    async def logout(self, sid: str | None) -> None:
        """Destroy the session. Returns only after the row is gone."""
        if not sid:
            return
        removed = await run_in_threadpool(self.sessions.clear, sid)
        if removed:
            logger.info("User has logged out")

    # ------------------------------------------------------------------
    # Flash message (single slot, pop semantics)
    # ------------------------------------------------------------------

    async def flash(self, sid: str | None, message: str) -> str:
        """Queue a one-time message, creating an anonymous session if needed.

        Returns the session id holding the message (new when sid was None or
        unknown). A later flash overwrites an unread one.
        """
        data = await run_in_threadpool(self.sessions.get, sid) if sid else None
        if data is None:
            sid, data = new_session_id(), {}
        data[_MESSAGE_KEY] = message
        await run_in_threadpool(self.sessions.set, sid, data)
        return sid

    async def pop_message(self, sid: str | None) -> str | None:
        """Return and clear the queued message. A second call returns None."""
        if not sid:
            return None
        data = await run_in_threadpool(self.sessions.get, sid)
        if not data or _MESSAGE_KEY not in data:
            return None
        message = data.pop(_MESSAGE_KEY)
        await run_in_threadpool(self._write, sid, data)
        return message if isinstance(message, str) else None

    def _write(self, sid: str, data: dict) -> None:
        # An anonymous session with nothing left in it is not worth keeping.
        if data:
            self.sessions.set(sid, data)
        else:
            self.sessions.clear(sid)
