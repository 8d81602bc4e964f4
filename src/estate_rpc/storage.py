"""
SQLite storage for users, refresh tokens and saved properties.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    reset_token TEXT,
    reset_token_expiry REAL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS refresh_tokens (
    user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    token_hash TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS saved_properties (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    property_id TEXT NOT NULL,
    address TEXT NOT NULL,
    price REAL,
    bedrooms REAL,
    bathrooms REAL,
    sqft REAL,
    property_type TEXT,
    image_url TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (user_id, property_id)
);
"""

PROPERTY_FIELDS = ("price", "bedrooms", "bathrooms", "sqft", "property_type", "image_url")


class Database:
    """Opens a fresh connection per operation, so it is safe to share across threads."""

    def __init__(self, path: str):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # users

    def create_user(self, name: str, email: str, password_hash: str) -> Optional[int]:
        """Insert a user. Returns None when the email is taken."""
        try:
            with self.connect() as conn:
                cur = conn.execute(
                    "INSERT INTO users (name, email, password) VALUES (?, ?, ?)",
                    (name, email, password_hash),
                )
                return cur.lastrowid
        except sqlite3.IntegrityError:
            return None

    def get_user_by_email(self, email: str) -> Optional[dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return dict(row) if row else None

    def get_user_by_id(self, user_id: int) -> Optional[dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def email_taken(self, email: str, exclude_user_id: Optional[int] = None) -> bool:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT id FROM users WHERE email = ? AND id != ?",
                (email, exclude_user_id if exclude_user_id is not None else -1),
            ).fetchone()
        return row is not None

    def update_user(self, user_id: int, **fields: Any) -> None:
        allowed = {"name", "email", "password", "reset_token", "reset_token_expiry"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")
        if not fields:
            return
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self.connect() as conn:
            conn.execute(f"UPDATE users SET {assignments} WHERE id = ?", (*fields.values(), user_id))

    # refresh tokens

    def store_refresh_token(self, user_id: int, token_hash: str, expires_at: float) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO refresh_tokens (user_id, token_hash, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT(user_id) DO UPDATE SET token_hash = excluded.token_hash, expires_at = excluded.expires_at",
                (user_id, token_hash, expires_at),
            )

    def refresh_token_valid(self, user_id: int, token_hash: str, now: float) -> bool:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM refresh_tokens WHERE user_id = ? AND token_hash = ? AND expires_at > ?",
                (user_id, token_hash, now),
            ).fetchone()
        return row is not None

    def invalidate_refresh_token(self, user_id: int) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM refresh_tokens WHERE user_id = ?", (user_id,))

    # saved properties

    def save_property(self, user_id: int, property_id: str, address: str, **details: Any) -> bool:
        """Insert a saved property. Returns False when the user already saved it."""
        values = [details.get(f) for f in PROPERTY_FIELDS]
        try:
            with self.connect() as conn:
                conn.execute(
                    "INSERT INTO saved_properties (user_id, property_id, address, "
                    f"{', '.join(PROPERTY_FIELDS)}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (user_id, property_id, address, *values),
                )
            return True
        except sqlite3.IntegrityError:
            return False

    def list_saved_properties(self, user_id: int) -> list[dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM saved_properties WHERE user_id = ? ORDER BY created_at DESC, id DESC",
                (user_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def delete_saved_property(self, user_id: int, property_id: str) -> bool:
        with self.connect() as conn:
            cur = conn.execute(
                "DELETE FROM saved_properties WHERE user_id = ? AND property_id = ?",
                (user_id, property_id),
            )
        return cur.rowcount > 0
