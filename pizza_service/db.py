from __future__ import annotations

import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Sequence
from urllib.parse import urlparse

from pizza_service.auth.security import hash_password
from pizza_service.config import Config
from pizza_service.errors import ConflictError, DBConnectionError, StatusCodeError, TransactionError
from pizza_service.models import Role
from pizza_service.schema import SENTINEL_TABLE, schema_statements


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


def detect_dialect(dsn: str) -> str:
    """Return 'postgres' or 'sqlite'."""
    s = (dsn or "").strip()
    if not s:
        return "sqlite"
    try:
        scheme = urlparse(s).scheme.lower()
    except Exception:
        scheme = ""
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    return "sqlite"


def _qmark_to_pct(sql: str) -> str:
    """Convert SQLite qmark placeholders (?) to psycopg2 placeholders (%s).

    This is a lightweight conversion that avoids replacing '?' inside single/double-quoted
    string literals. It's not a full SQL parser, but it is sufficient for this codebase.
    """
    out: List[str] = []
    in_single = False
    in_double = False
    i = 0
    while i < len(sql):
        ch = sql[i]

        if ch == "'" and not in_double:
            out.append(ch)
            if in_single:
                # Escaped single quote: ''
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    out.append("'")
                    i += 2
                    continue
                in_single = False
            else:
                in_single = True
            i += 1
            continue

        if ch == '"' and not in_single:
            out.append(ch)
            in_double = not in_double
            i += 1
            continue

        if ch == "?" and not in_single and not in_double:
            out.append("%s")
            i += 1
            continue

        out.append(ch)
        i += 1

    return "".join(out)


def _is_integrity_error(exc: BaseException) -> bool:
    # SQLSTATE class 23 = integrity constraint violation
    return str(getattr(exc, "pgcode", "") or "").startswith("23")


class SQLiteConnection:
    """sqlite3 connection in autocommit mode; transactions are explicit."""

    dialect = "sqlite"
    # Set when a ROLLBACK failed; the pool closes it instead of reusing it.
    broken = False

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        try:
            return self._conn.execute(sql, tuple(params or ()))
        except sqlite3.IntegrityError as e:
            raise ConflictError(str(e)) from e

    def insert(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run an INSERT and return the new row id."""
        return int(self.execute(sql, params).lastrowid)

    def begin(self) -> None:
        self._conn.execute("BEGIN")

    def commit(self) -> None:
        self._conn.execute("COMMIT")

    def rollback(self) -> None:
        self._conn.execute("ROLLBACK")

    def close(self) -> None:
        self._conn.close()


class PGCursor:
    def __init__(self, cur: Any):
        self._cur = cur

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> "PGCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def fetchone(self) -> Any:
        return self._cur.fetchone()

    def fetchall(self) -> Any:
        return self._cur.fetchall()

    @property
    def rowcount(self) -> int:
        return int(self._cur.rowcount or 0)


class PGConnection:
    """A tiny adapter that makes psycopg2 connections look like the sqlite adapter."""

    dialect = "postgres"
    broken = False

    def __init__(self, conn: Any):
        self._conn = conn

    @property
    def raw(self) -> Any:
        return self._conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> PGCursor:
        wrapper = PGCursor(self._conn.cursor())
        try:
            return wrapper.execute(sql, params)
        except Exception as e:
            if _is_integrity_error(e):
                raise ConflictError(str(e)) from e
            raise

    def insert(self, sql: str, params: Sequence[Any] | None = None) -> int:
        row = self.execute(f"{sql} RETURNING id", params).fetchone()
        return int(row["id"])

    # Connections are in autocommit mode, so transaction control is plain SQL.
    def begin(self) -> None:
        self.execute("BEGIN")

    def commit(self) -> None:
        self.execute("COMMIT")

    def rollback(self) -> None:
        self.execute("ROLLBACK")

    def close(self) -> None:
        self._conn.close()


def _sqlite_path(dsn: str) -> str:
    # Support sqlite:///path style
    if dsn.lower().startswith("sqlite:///"):
        return dsn[len("sqlite:///") :]
    return dsn


class ConnectionPool:
    """Hands out connections and takes them back.

    - Postgres: psycopg2 ThreadedConnectionPool (RealDictCursor rows).
    - SQLite: idle connections are kept in a bounded LIFO queue; a connection that
      does not fit back in the queue is closed.
    """

    def __init__(self, dsn: str, *, max_size: int = 10, timeout: int = 60):
        self.dsn = (dsn or "").strip()
        self.dialect = detect_dialect(self.dsn)
        self.max_size = max(1, int(max_size))
        self.timeout = int(timeout)
        self._idle: "queue.LifoQueue[SQLiteConnection]" = queue.LifoQueue(maxsize=self.max_size)
        self._pg_pool: Any = None
        self._lock = threading.Lock()

    def _postgres_pool(self) -> Any:
        with self._lock:
            if self._pg_pool is not None:
                return self._pg_pool
            try:
                import psycopg2.extras
                import psycopg2.pool
            except Exception as e:
                raise RuntimeError(
                    "Postgres selected but psycopg2 is not installed. "
                    "Install psycopg2-binary and try again."
                ) from e

            try:
                self._pg_pool = psycopg2.pool.ThreadedConnectionPool(
                    1,
                    self.max_size,
                    self.dsn,
                    connect_timeout=self.timeout,
                    cursor_factory=psycopg2.extras.RealDictCursor,
                )
            except psycopg2.Error as e:
                raise DBConnectionError(f"unable to connect to database: {e}") from e
            return self._pg_pool

    def _sqlite_connect(self) -> SQLiteConnection:
        path = _sqlite_path(self.dsn) or "./pizza_service.sqlite"
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            raw = sqlite3.connect(path, timeout=self.timeout, check_same_thread=False, isolation_level=None)
            raw.row_factory = sqlite3.Row
            raw.execute("PRAGMA journal_mode=WAL;")
            raw.execute("PRAGMA synchronous=NORMAL;")
            raw.execute("PRAGMA busy_timeout=5000;")  # 5s
            raw.execute("PRAGMA foreign_keys = ON;")
        except (sqlite3.Error, OSError) as e:
            raise DBConnectionError(f"unable to connect to database: {e}") from e
        return SQLiteConnection(raw)

    def acquire(self) -> Any:
        if self.dialect == "postgres":
            import psycopg2

            pool = self._postgres_pool()
            try:
                raw = pool.getconn()
                raw.autocommit = True
            except psycopg2.Error as e:
                raise DBConnectionError(f"unable to connect to database: {e}") from e
            return PGConnection(raw)

        try:
            return self._idle.get_nowait()
        except queue.Empty:
            return self._sqlite_connect()

    def release(self, conn: Any) -> None:
        if isinstance(conn, PGConnection):
            raw = conn.raw
            self._postgres_pool().putconn(raw, close=conn.broken or bool(getattr(raw, "closed", False)))
            return

        if conn.broken:
            conn.close()
            return
        try:
            self._idle.put_nowait(conn)
        except queue.Full:
            conn.close()

    def close_all(self) -> None:
        with self._lock:
            if self._pg_pool is not None:
                self._pg_pool.closeall()
                self._pg_pool = None
        while True:
            try:
                self._idle.get_nowait().close()
            except queue.Empty:
                break


def _rollback_quietly(conn: Any) -> None:
    try:
        conn.rollback()
    except Exception as e:
        _debug(f"Rollback failed, discarding connection: {e}")
        conn.broken = True


class Database:
    """Explicit database handle: one pool plus a once-only schema initialization.

    Build one per process (the API does it at startup) and share it. Every
    `connection()` / `transaction()` waits for `ready()` first.
    """

    def __init__(self, cfg: Config, *, pool: ConnectionPool | None = None):
        self.cfg = cfg
        self.pool = pool or ConnectionPool(
            cfg.DB_DSN,
            max_size=cfg.DB_POOL_SIZE,
            timeout=cfg.DB_CONNECT_TIMEOUT,
        )
        self.dialect = self.pool.dialect
        self._init_lock = threading.Lock()
        self._initialized = threading.Event()

    def ready(self) -> None:
        if self._initialized.is_set():
            return
        with self._init_lock:
            if self._initialized.is_set():
                return
            self._initialize()
            self._initialized.set()

    @property
    def is_ready(self) -> bool:
        return self._initialized.is_set()

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Scoped connection; released on every exit path."""
        self.ready()
        conn = self.pool.acquire()
        try:
            yield conn
        finally:
            self.pool.release(conn)

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """BEGIN ... COMMIT, with ROLLBACK on any exception (which is re-raised)."""
        with self.connection() as conn:
            conn.begin()
            try:
                yield conn
            except Exception:
                _rollback_quietly(conn)
                raise
            try:
                conn.commit()
            except StatusCodeError:
                _rollback_quietly(conn)
                raise
            except Exception as e:
                _rollback_quietly(conn)
                raise TransactionError(f"commit failed: {e}") from e

    def close(self) -> None:
        self.pool.close_all()

    # -----------------------------
    # Schema
    # -----------------------------

    def _initialize(self) -> None:
        _debug(f"Initializing DB ({self.dialect})")
        conn = self.pool.acquire()
        try:
            # Ensure only one process runs schema DDL at a time.
            if self.dialect == "postgres":
                conn.execute("SELECT pg_advisory_lock(2147483646);")
            try:
                if has_table(conn, SENTINEL_TABLE):
                    _debug("Schema present")
                    return
                conn.begin()
                try:
                    for stmt in schema_statements(self.dialect):
                        conn.execute(stmt)
                    _seed(conn, self.cfg)
                    conn.commit()
                except Exception:
                    _rollback_quietly(conn)
                    raise
                _debug("Schema created and seeded")
            finally:
                if self.dialect == "postgres":
                    conn.execute("SELECT pg_advisory_unlock(2147483646);")
        finally:
            self.pool.release(conn)


def has_table(conn: Any, table: str) -> bool:
    if conn.dialect == "postgres":
        r = conn.execute(
            """
            SELECT 1
            FROM information_schema.tables
            WHERE table_schema='public' AND table_name=?
            LIMIT 1
            """,
            (table,),
        ).fetchone()
        return r is not None

    r = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table,),
    ).fetchone()
    return r is not None


def _seed(conn: Any, cfg: Config) -> None:
    """Create the bootstrap admin user.

    - AUTH_BOOTSTRAP_ADMIN_EMAIL (default: a@jwt.com)
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD (default: admin)

    If env explicitly clears either, nothing is created.
    """
    email = (cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL or "").strip()
    password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD or ""
    if not email or not password:
        return

    name = cfg.AUTH_BOOTSTRAP_ADMIN_NAME or "admin"
    user_id = conn.insert(
        "INSERT INTO users (name, email, password) VALUES (?, ?, ?)",
        (name, email, hash_password(password)),
    )
    conn.execute(
        "INSERT INTO user_roles (user_id, role, object_id) VALUES (?, ?, ?)",
        (user_id, Role.ADMIN.value, 0),
    )
    _debug(f"Bootstrapped admin user: email={email}")
