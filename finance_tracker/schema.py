"""Database schema for the Finance Tracker backend.

SQLite is the default engine; Postgres is supported for deployments.

Timestamps are ISO-8601 TEXT (UTC, with 'Z') and calendar dates are TEXT
YYYY-MM-DD. Both sort lexicographically in time order, so range filters like
`date >= ?` and `login_at >= ?` behave the same on either engine.

Identities are opaque UUID strings. Every table that belongs to a user
references `users(user_id)` with ON DELETE CASCADE, so deleting an identity
removes its profile, role, login history and financial records.

The Postgres DDL is derived from the SQLite text by a few regex rewrites
(see `_PG_REWRITES`).
"""

from __future__ import annotations

import re

# Bump when tables or columns change; `db._migrate` brings older stores forward.
SCHEMA_VERSION = 3


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Identities (credential service)
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    email_confirmed_at TEXT,
    user_metadata_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_sign_in_at TEXT
);

-- Application-level profile, one per identity
CREATE TABLE IF NOT EXISTS profiles (
    user_id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    full_name TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    must_change_password INTEGER NOT NULL DEFAULT 0,
    temp_password TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_profiles_active ON profiles (is_active);
CREATE INDEX IF NOT EXISTS idx_profiles_created_at ON profiles (created_at);

-- Role assignment, one per identity
CREATE TABLE IF NOT EXISTS user_roles (
    user_id TEXT PRIMARY KEY,
    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('admin','user')),
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);

-- Append-only sign-in log (pruned after a retention window)
CREATE TABLE IF NOT EXISTS login_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    login_at TEXT NOT NULL,
    user_agent TEXT,
    ip_address TEXT,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_login_history_user_login ON login_history (user_id, login_at);
CREATE INDEX IF NOT EXISTS idx_login_history_login_at ON login_history (login_at);

-- Access requests from anonymous visitors
CREATE TABLE IF NOT EXISTS access_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL,
    phone_number TEXT NOT NULL,
    full_name TEXT,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','approved','rejected')),
    requested_at TEXT NOT NULL,
    reviewed_at TEXT,
    reviewed_by TEXT,
    rejection_reason TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS uq_access_requests_pending_email
    ON access_requests (email) WHERE status = 'pending';
CREATE INDEX IF NOT EXISTS idx_access_requests_status ON access_requests (status, requested_at);

-- One-time password recovery tokens (only the hash is stored)
CREATE TABLE IF NOT EXISTS password_reset_tokens (
    token_hash TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    used_at TEXT,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);

-- Financial records (owner-scoped)
CREATE TABLE IF NOT EXISTS income (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    date TEXT NOT NULL,
    amount REAL NOT NULL,
    source TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_income_user_date ON income (user_id, date);

CREATE TABLE IF NOT EXISTS expenses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    date TEXT NOT NULL,
    amount REAL NOT NULL,
    expense_details TEXT NOT NULL,
    payment_mode TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_expenses_user_date ON expenses (user_id, date);

CREATE TABLE IF NOT EXISTS savings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    date TEXT NOT NULL,
    amount REAL NOT NULL,
    details TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_savings_user_date ON savings (user_id, date);
"""


# (pattern, replacement) pairs turning the SQLite DDL into Postgres DDL.
_PG_REWRITES = (
    (re.compile(r"^\s*PRAGMA\s.*$\n?", re.IGNORECASE | re.MULTILINE), ""),
    (re.compile(r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT", re.IGNORECASE), "BIGSERIAL PRIMARY KEY"),
    (re.compile(r"\bREAL\b"), "DOUBLE PRECISION"),
)


def _sqlite_to_postgres(ddl: str) -> str:
    for pattern, replacement in _PG_REWRITES:
        ddl = pattern.sub(replacement, ddl)
    return ddl


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    return SCHEMA_POSTGRES if dialect == "postgres" else SCHEMA_SQLITE
