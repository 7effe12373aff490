"""
auth/store.py -- SQLAlchemy Core persistence layer for principals.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_principal is the mapper.
Route and session code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(name) is enforced by the database, not by a lock in Python. create()
  does a cheap lookup first so the common "name taken" case skips the KDF,
  but the INSERT is the real check: two concurrent creates for the same name
  both pass the lookup, exactly one INSERT wins, and the loser's
  IntegrityError is translated into DuplicateName.

DB path: catalog_auth.db at the project root (DATABASE_URL overrides).

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import DuplicateName, StoreUnavailable
from auth.models import Principal
from auth.passwords import PasswordHasher

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_principals = Table(
    "principals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("salt", String(64), nullable=False),
    Column("hash", String(256), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers (shared with auth/sessions.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite settings every store needs.

    check_same_thread=False because store calls are offloaded to the worker
    thread pool and a pooled connection may be used from another thread.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Principal records.

    Usage:
        store = CredentialStore("sqlite:///catalog_auth.db", hasher=PasswordHasher())
        alice = store.create("alice", "s3cret")
        store.find_by_name("alice")
        store.close()
    """

    def __init__(self, db_url: str, hasher: PasswordHasher) -> None:
        self.hasher = hasher
        self.engine: Engine = make_engine(db_url)
        with self._connect() as conn:
            metadata.create_all(conn)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection, translating driver outages into StoreUnavailable."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except OperationalError as exc:
            raise StoreUnavailable(str(exc.orig) if exc.orig is not None else str(exc)) from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_name(self, name: str) -> Principal | None:
        """Look up a principal by exact name (case-sensitive). Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.name == name)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def find_by_id(self, principal_id: int) -> Principal | None:
        """Look up a principal by primary key. Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def has_principals(self) -> bool:
        return self.count() > 0

    def count(self) -> int:
        with self._connect() as conn:
            result = conn.execute(select(func.count()).select_from(_principals)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, name: str, secret: str) -> Principal:
        """Create a principal with a fresh salt and a derived hash.

        Raises DuplicateName if the name is taken, either by an existing row
        or by a concurrent create that committed first.
        """
        if self.find_by_name(name) is not None:
            raise DuplicateName(name)
        salt = self.hasher.generate_salt()
        principal = Principal(name=name, salt=salt, hash=self.hasher.derive(secret, salt))
        principal.id = self.add(principal)
        return self.find_by_id(principal.id) or principal

    def add(self, principal: Principal) -> int:
        """Insert an already-hashed principal and return its assigned ID.

        The UNIQUE constraint on name makes check-and-insert atomic; a
        violation surfaces as DuplicateName.
        """
        try:
            with self._connect() as conn:
                result = conn.execute(
                    _principals.insert().values(
                        name=principal.name,
                        salt=principal.salt,
                        hash=principal.hash,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateName(principal.name) from exc

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        name=row.name,
        salt=row.salt,
        hash=row.hash,
        created_at=row.created_at,
    )
