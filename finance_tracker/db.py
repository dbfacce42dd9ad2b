from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence
from urllib.parse import urlparse

from finance_tracker.schema import SCHEMA_VERSION, get_schema_sql


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


# Key for pg_advisory_lock while DDL runs; any constant works as long as it is shared.
_DDL_LOCK_KEY = 7305001


def dialect_of(dsn: str) -> str:
    """'postgres' for postgres:// URLs, otherwise 'sqlite'."""
    scheme = urlparse((dsn or "").strip()).scheme.lower()
    return "postgres" if scheme in ("postgres", "postgresql") else "sqlite"


def _qmark_to_pct(sql: str) -> str:
    """Convert qmark placeholders (?) to psycopg2 placeholders (%s).

    Question marks inside single- or double-quoted literals are left alone.
    Literal percent signs are doubled everywhere so psycopg2 does not read
    them as placeholders.
    """
    out: List[str] = []
    quote: Optional[str] = None
    for ch in sql:
        if quote is not None:
            out.append("%%" if ch == "%" else ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append("%s")
        elif ch == "%":
            out.append("%%")
        else:
            out.append(ch)
    return "".join(out)


class _PostgresCursor:
    def __init__(self, cur: Any):
        self._cur = cur

    def run(self, sql: str, params: Sequence[Any] | None) -> "_PostgresCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def fetchone(self) -> Any:
        return self._cur.fetchone()

    def fetchall(self) -> List[Any]:
        return list(self._cur.fetchall())

    @property
    def rowcount(self) -> int:
        return max(int(self._cur.rowcount or 0), 0)


class PostgresConnection:
    """psycopg2 connection with the sqlite3 surface the data layer uses.

    Callers write qmark SQL once; `execute()` rewrites it for psycopg2 and
    rows come back as dicts (RealDictCursor), like sqlite3.Row.
    """

    dialect = "postgres"

    def __init__(self, raw: Any):
        self.raw = raw

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> _PostgresCursor:
        return _PostgresCursor(self.raw.cursor()).run(sql, params)

    def commit(self) -> None:
        self.raw.commit()

    def rollback(self) -> None:
        self.raw.rollback()

    def close(self) -> None:
        self.raw.close()


def _open_postgres(dsn: str) -> PostgresConnection:
    try:
        import psycopg2
        import psycopg2.extras
    except ImportError as e:
        raise RuntimeError("FINANCE_DATABASE_URL points at Postgres but psycopg2 is not installed (pip install psycopg2-binary)") from e
    return PostgresConnection(psycopg2.connect(dsn, cursor_factory=psycopg2.extras.RealDictCursor))


def _open_sqlite(dsn: str) -> sqlite3.Connection:
    path = dsn[len("sqlite:///") :] if dsn.lower().startswith("sqlite:///") else dsn
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    for pragma in ("journal_mode=WAL", "synchronous=NORMAL", "busy_timeout=5000", "foreign_keys=ON"):
        conn.execute(f"PRAGMA {pragma};")
    return conn


@contextmanager
def connect(db_dsn: str) -> Iterator[Any]:
    """One unit of work: commit when the block exits cleanly, roll back otherwise.

    Account deletion relies on ON DELETE CASCADE, so SQLite connections always
    enable foreign keys.
    """
    dsn = (db_dsn or "").strip()
    conn: Any = _open_postgres(dsn) if dialect_of(dsn) == "postgres" else _open_sqlite(dsn)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_dsn: str) -> None:
    """Create missing tables, apply column migrations and stamp the schema version."""
    dialect = dialect_of(db_dsn)
    _debug(f"Initializing {dialect} store at {db_dsn}")
    ddl = get_schema_sql(dialect)
    with connect(db_dsn) as conn:
        if dialect == "postgres":
            # API workers may start together; only one runs DDL at a time.
            conn.execute("SELECT pg_advisory_lock(?)", (_DDL_LOCK_KEY,))
            try:
                for stmt in filter(None, (s.strip() for s in ddl.split(";"))):
                    conn.execute(stmt)
                _migrate(conn, dialect=dialect)
            finally:
                conn.execute("SELECT pg_advisory_unlock(?)", (_DDL_LOCK_KEY,))
        else:
            conn.executescript(ddl)
            _migrate(conn, dialect=dialect)
        set_app_config(conn, "schema_version", str(SCHEMA_VERSION))


def _columns(conn: Any, table: str, *, dialect: str) -> List[str]:
    if dialect == "postgres":
        rows = conn.execute(
            "SELECT column_name AS name FROM information_schema.columns WHERE table_schema='public' AND table_name=?",
            (table,),
        ).fetchall()
    else:
        rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return [str(r["name"]) for r in rows]


# (table, column, ddl) for columns added after the first release.
_ADDED_COLUMNS = (
    ("profiles", "temp_password", "TEXT"),
    ("profiles", "created_by", "TEXT"),
    ("profiles", "must_change_password", "INTEGER NOT NULL DEFAULT 0"),
    ("login_history", "ip_address", "TEXT"),
    ("access_requests", "reviewed_by", "TEXT"),
)


def _migrate(conn: Any, *, dialect: str) -> None:
    """Forward-only: add any column an older database is missing."""
    seen: dict[str, List[str]] = {}
    for table, column, ddl in _ADDED_COLUMNS:
        if table not in seen:
            seen[table] = _columns(conn, table, dialect=dialect)
        if column not in seen[table]:
            _debug(f"Adding column {table}.{column}")
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


def set_app_config(conn: Any, key: str, value: str) -> None:
    conn.execute(
        "INSERT INTO app_config (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )


def get_app_config(conn: Any, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM app_config WHERE key=?", (key,)).fetchone()
    return None if row is None else str(row["value"])
