"""
Per-request sqlite connection, schema and the settings table.
"""

import sqlite3
from datetime import datetime, timezone

from flask import current_app, g

PER_PAGE_DEFAULT = 10
ADMIN_PER_PAGE_DEFAULT = 50

SETTING_DEFAULTS = {
    "site_name": "quire",
    "description": "a small blog",
    "default_markup": "markdown",
    "per_page": str(PER_PAGE_DEFAULT),
    "admin_per_page": str(ADMIN_PER_PAGE_DEFAULT),
}


###############################################################################
# Connection
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(current_app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        ------------------------------------------------------------
        -- 1.  Accounts + site settings
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS user (
            id             INTEGER PRIMARY KEY,
            name           TEXT UNIQUE NOT NULL,
            email          TEXT,
            password_hash  TEXT NOT NULL,
            created_at     TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS settings (
            key    TEXT PRIMARY KEY,
            value  TEXT
        );

        ------------------------------------------------------------
        -- 2.  Categories
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS category (
            id           INTEGER PRIMARY KEY,
            title        TEXT NOT NULL,
            slug         TEXT UNIQUE NOT NULL,
            description  TEXT,
            parent_id    INTEGER REFERENCES category(id) ON DELETE SET NULL
        );

        ------------------------------------------------------------
        -- 3.  Entries (posts + pages share one table)
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS entry (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            type         TEXT NOT NULL,
            user_id      INTEGER REFERENCES user(id) ON DELETE SET NULL,
            category_id  INTEGER REFERENCES category(id) ON DELETE SET NULL,
            title        TEXT NOT NULL,
            slug         TEXT UNIQUE,
            body         TEXT NOT NULL,
            markup       TEXT NOT NULL DEFAULT 'markdown',
            draft        INTEGER NOT NULL DEFAULT 0,
            created_at   TEXT NOT NULL,
            updated_at   TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_entry_type_created
            ON entry(type, created_at);

        ------------------------------------------------------------
        -- 4.  Tags
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS tag (
            id    INTEGER PRIMARY KEY,
            name  TEXT UNIQUE NOT NULL
        );

        CREATE TABLE IF NOT EXISTS entry_tag (
            entry_id  INTEGER NOT NULL REFERENCES entry(id) ON DELETE CASCADE,
            tag_id    INTEGER NOT NULL REFERENCES tag(id) ON DELETE CASCADE,
            PRIMARY KEY (entry_id, tag_id)
        );

        ------------------------------------------------------------
        -- 5.  Custom fields
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS field_name (
            id    INTEGER PRIMARY KEY,
            name  TEXT UNIQUE NOT NULL
        );

        CREATE TABLE IF NOT EXISTS field (
            entry_id       INTEGER NOT NULL REFERENCES entry(id) ON DELETE CASCADE,
            field_name_id  INTEGER NOT NULL REFERENCES field_name(id) ON DELETE CASCADE,
            value          TEXT,
            PRIMARY KEY (entry_id, field_name_id)
        );

        ------------------------------------------------------------
        -- 6.  Comments
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS comment (
            id          INTEGER PRIMARY KEY,
            entry_id    INTEGER NOT NULL REFERENCES entry(id) ON DELETE CASCADE,
            name        TEXT NOT NULL,
            email       TEXT,
            homepage    TEXT,
            body        TEXT NOT NULL,
            created_at  TEXT NOT NULL
        );
        """
    )
    db.commit()


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat(timespec="seconds")


###############################################################################
# Settings
###############################################################################
def get_setting(key, default=None):
    row = get_db().execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    if row:
        return row["value"]
    return SETTING_DEFAULTS.get(key) if default is None else default


def set_setting(key, value):
    db = get_db()
    db.execute(
        "INSERT INTO settings (key,value) VALUES (?,?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )
    db.commit()


def setting_int(key: str, default: int) -> int:
    try:
        value = int(get_setting(key, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


# Pagination helpers
def paginate(base_sql: str, params: tuple, *, page: int, per_page: int, db):
    total = db.execute(f"SELECT COUNT(*) FROM ({base_sql})", params).fetchone()[0]
    pages = (total + per_page - 1) // per_page
    rows = db.execute(
        f"{base_sql} LIMIT ? OFFSET ?", params + (per_page, (page - 1) * per_page)
    ).fetchall()
    return rows, pages


def page_arg(raw) -> int:
    """`?page=` as a positive int, falling back to the first page."""
    try:
        page = int(raw)
    except (TypeError, ValueError):
        return 1
    return max(page, 1)
