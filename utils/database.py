"""
SQLite settings store.

Settings are kept as JSON-encoded values in a single key/value table.
The database path comes from TAGWATCH_DB_PATH.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

logger = logging.getLogger('tagwatch.database')

DEFAULT_DB_PATH = os.path.join('instance', 'tagwatch.db')

_init_lock = threading.Lock()
_initialized_paths: set[str] = set()


def get_db_path() -> str:
    """Get the settings database path."""
    return os.environ.get('TAGWATCH_DB_PATH', DEFAULT_DB_PATH)


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Open a connection, commit on success and roll back on error."""
    path = get_db_path()
    if path != ':memory:':
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        _ensure_schema(conn, path)
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _ensure_schema(conn: sqlite3.Connection, path: str) -> None:
    with _init_lock:
        if path in _initialized_paths and path != ':memory:':
            return
        conn.execute('''
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')
        _initialized_paths.add(path)


def get_setting(key: str, default: Any = None) -> Any:
    """Get a setting value, or the default if it is not set."""
    with get_db() as conn:
        row = conn.execute(
            'SELECT value FROM settings WHERE key = ?', (key,)
        ).fetchone()

    if row is None:
        return default

    try:
        return json.loads(row['value'])
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed setting {key!r}")
        return default


def set_setting(key: str, value: Any) -> None:
    """Create or replace a setting."""
    with get_db() as conn:
        conn.execute('''
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = CURRENT_TIMESTAMP
        ''', (key, json.dumps(value)))


def delete_setting(key: str) -> bool:
    """Delete a setting. Returns True if it existed."""
    with get_db() as conn:
        cursor = conn.execute('DELETE FROM settings WHERE key = ?', (key,))
        return cursor.rowcount > 0


def get_all_settings() -> dict[str, Any]:
    """Get every setting as a dict."""
    with get_db() as conn:
        rows = conn.execute('SELECT key, value FROM settings ORDER BY key').fetchall()

    settings = {}
    for row in rows:
        try:
            settings[row['key']] = json.loads(row['value'])
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed setting {row['key']!r}")
    return settings
