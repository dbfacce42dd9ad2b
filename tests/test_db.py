from __future__ import annotations

import sqlite3

from finance_tracker.db import _qmark_to_pct, connect, dialect_of, get_app_config, init_db
from finance_tracker.schema import SCHEMA_VERSION, get_schema_sql


def test_dialect_detection():
    assert dialect_of("postgresql://u:p@localhost/db") == "postgres"
    assert dialect_of("postgres://localhost/db") == "postgres"
    assert dialect_of("./finance.sqlite") == "sqlite"
    assert dialect_of("sqlite:///tmp/x.sqlite") == "sqlite"


def test_qmark_placeholders():
    assert _qmark_to_pct("SELECT * FROM t WHERE a=? AND b=?") == "SELECT * FROM t WHERE a=%s AND b=%s"
    assert _qmark_to_pct("SELECT '?' FROM t WHERE a LIKE ?") == "SELECT '?' FROM t WHERE a LIKE %s"
    assert _qmark_to_pct("SELECT '50%' WHERE x LIKE ?") == "SELECT '50%%' WHERE x LIKE %s"


def test_postgres_schema_translation():
    ddl = get_schema_sql("postgres")
    assert "PRAGMA" not in ddl
    assert "AUTOINCREMENT" not in ddl
    assert "BIGSERIAL PRIMARY KEY" in ddl
    assert "DOUBLE PRECISION" in ddl


def test_init_db_is_idempotent_and_stamps_version(tmp_path):
    dsn = str(tmp_path / "a.sqlite")
    init_db(dsn)
    init_db(dsn)
    with connect(dsn) as conn:
        assert get_app_config(conn, "schema_version") == str(SCHEMA_VERSION)
        assert get_app_config(conn, "missing") is None


def test_migrate_adds_missing_columns(tmp_path):
    dsn = str(tmp_path / "old.sqlite")
    raw = sqlite3.connect(dsn)
    raw.executescript(
        """
        CREATE TABLE users (user_id TEXT PRIMARY KEY, email TEXT NOT NULL UNIQUE, password_hash TEXT NOT NULL,
            email_confirmed_at TEXT, user_metadata_json TEXT NOT NULL DEFAULT '{}', created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL, last_sign_in_at TEXT);
        CREATE TABLE profiles (user_id TEXT PRIMARY KEY, email TEXT NOT NULL, full_name TEXT,
            is_active INTEGER NOT NULL DEFAULT 1, created_at TEXT NOT NULL, updated_at TEXT NOT NULL);
        CREATE TABLE login_history (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id TEXT NOT NULL,
            login_at TEXT NOT NULL, user_agent TEXT);
        """
    )
    raw.commit()
    raw.close()

    init_db(dsn)

    with connect(dsn) as conn:
        profile_cols = [r["name"] for r in conn.execute("PRAGMA table_info(profiles)").fetchall()]
        history_cols = [r["name"] for r in conn.execute("PRAGMA table_info(login_history)").fetchall()]
    assert {"temp_password", "created_by", "must_change_password"} <= set(profile_cols)
    assert "ip_address" in history_cols


def test_connect_rolls_back_on_error(tmp_path):
    dsn = str(tmp_path / "rb.sqlite")
    init_db(dsn)
    try:
        with connect(dsn) as conn:
            conn.execute("INSERT INTO app_config (key, value) VALUES ('k', 'v')")
            raise RuntimeError("abort")
    except RuntimeError:
        pass
    with connect(dsn) as conn:
        assert get_app_config(conn, "k") is None
