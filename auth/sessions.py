"""
auth/sessions.py -- Server-side session storage with TTL expiry.

Each row maps an opaque session id to a JSON payload (the SessionToken plus
any queued flash messages). The browser only ever holds the signed session id;
the payload never leaves the server.

Semantics:
  get()   returns the payload, or None if missing or expired (expired rows
          are deleted on read so a stale id can never be revived).
  set()   replaces the payload and restarts the TTL. Last write wins.
  clear() deletes the row. Logout relies on this being synchronous: once it
          returns, every later request carrying the old cookie is anonymous.

Usage:
    sessions = SessionStore("sqlite:///catalog_auth.db", ttl=86400)
    sessions.set(sid, {"principal": {"id": 1}})
    sessions.get(sid)            # {"principal": {"id": 1}}
    sessions.clear(sid)
    sessions.purge_expired()     # call periodically to trim old rows

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Column, Float, MetaData, String, Table, Text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from auth.errors import StoreUnavailable
from auth.store import make_engine

_DEFAULT_TTL = 60 * 60 * 24  # 24 hours in seconds

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("sid", String(64), primary_key=True),
    Column("data", Text, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
)


class SessionStore:
    def __init__(self, db_url: str, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self.engine: Engine = make_engine(db_url)
        with self._connect() as conn:
            _metadata.create_all(conn)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except OperationalError as exc:
            raise StoreUnavailable(str(exc.orig) if exc.orig is not None else str(exc)) from exc

    def get(self, sid: str) -> dict | None:
        """Return the payload for sid if it exists and hasn't expired."""
        with self._connect() as conn:
            row = conn.execute(
                _sessions.select().where(_sessions.c.sid == sid)
            ).fetchone()
        if row is None:
            return None
        if row.expires_at <= time.time():
            self.clear(sid)
            return None
        try:
            data = json.loads(row.data)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def set(self, sid: str, data: dict) -> None:
        """Store data for sid, replacing any existing payload.

        Delete + insert run in one transaction so concurrent writers for the
        same sid serialize on the row and the last commit wins.
        """
        with self._connect() as conn:
            with conn.begin():
                conn.execute(_sessions.delete().where(_sessions.c.sid == sid))
                conn.execute(
                    _sessions.insert().values(
                        sid=sid,
                        data=json.dumps(data),
                        expires_at=time.time() + self.ttl,
                    )
                )

    def clear(self, sid: str) -> bool:
        """Delete the session. Returns True if a row was removed."""
        with self._connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.sid == sid))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete all expired sessions. Returns number of rows removed."""
        with self._connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= time.time()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
