"""Database schema for the pizza service.

The DDL is written for SQLite and converted for Postgres with a small set of
transformations (types + autoincrement).

Column names are snake_case so the same SQL works unquoted on both engines; the
repository maps rows to the camelCase shape the API returns.
"""

from __future__ import annotations

import re
from typing import List


SCHEMA_SQLITE = r"""
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_users_name ON users (name);

-- Auth sessions: the signature segment of an issued JWT.
CREATE TABLE IF NOT EXISTS auth_tokens (
    token TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id)
);
CREATE INDEX IF NOT EXISTS idx_auth_tokens_user ON auth_tokens (user_id);

-- object_id is the franchise id for franchisee roles, 0 otherwise.
CREATE TABLE IF NOT EXISTS user_roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('admin','franchisee','diner')),
    object_id INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (user_id) REFERENCES users(id)
);
CREATE INDEX IF NOT EXISTS idx_user_roles_user ON user_roles (user_id);
CREATE INDEX IF NOT EXISTS idx_user_roles_object ON user_roles (role, object_id);

CREATE TABLE IF NOT EXISTS menu (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    image TEXT NOT NULL,
    price REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS franchises (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS stores (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    franchise_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    FOREIGN KEY (franchise_id) REFERENCES franchises(id)
);
CREATE INDEX IF NOT EXISTS idx_stores_franchise ON stores (franchise_id);

-- Orders outlive the stores they were placed at, so franchise/store are not FKs.
CREATE TABLE IF NOT EXISTS diner_orders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    diner_id INTEGER NOT NULL,
    franchise_id INTEGER NOT NULL,
    store_id INTEGER NOT NULL,
    order_date TEXT NOT NULL,
    FOREIGN KEY (diner_id) REFERENCES users(id)
);
CREATE INDEX IF NOT EXISTS idx_diner_orders_diner ON diner_orders (diner_id);
CREATE INDEX IF NOT EXISTS idx_diner_orders_store ON diner_orders (store_id);

-- description/price are snapshots of the menu row at order time.
CREATE TABLE IF NOT EXISTS order_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id INTEGER NOT NULL,
    menu_id INTEGER NOT NULL,
    description TEXT NOT NULL,
    price REAL NOT NULL,
    FOREIGN KEY (order_id) REFERENCES diner_orders(id),
    FOREIGN KEY (menu_id) REFERENCES menu(id)
);
CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items (order_id);
"""

# The table whose presence means "schema already created".
SENTINEL_TABLE = "users"


def _sqlite_to_postgres(ddl: str) -> str:
    # Types
    out = re.sub(r"\bREAL\b", "DOUBLE PRECISION", ddl)

    # AUTOINCREMENT primary keys
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)

    return out


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE


def schema_statements(dialect: str) -> List[str]:
    """Split the DDL into individual statements (naive split is OK for our schema)."""
    lines = [ln for ln in get_schema_sql(dialect).splitlines() if not ln.strip().startswith("--")]
    return [s.strip() for s in "\n".join(lines).split(";") if s.strip()]
