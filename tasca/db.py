# tasca/db.py
"""On-device key-value storage for the local-only backend.

Each key holds one JSON document (an array or an object), mirroring the
browser storage layout the app started with.
"""
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

USERS_KEY = 'gustointasca_users'
CARDS_KEY = 'gustointasca_cards'
CURRENT_USER_KEY = 'gustointasca_current_user'

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


def _open_conn(path: Path) -> sqlite3.Connection:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(p), timeout=30)
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def ensure_db(path: Path) -> None:
    conn = _open_conn(path)
    try:
        conn.executescript(SCHEMA)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.commit()
    finally:
        conn.close()


def get_item(path: Path, key: str) -> Optional[str]:
    ensure_db(path)
    conn = _open_conn(path)
    try:
        row = conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
        return row[0] if row else None
    finally:
        conn.close()


def set_item(path: Path, key: str, value: str) -> None:
    ensure_db(path)
    conn = _open_conn(path)
    try:
        conn.execute(
            """
            INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=CURRENT_TIMESTAMP
            """,
            (key, value)
        )
        conn.commit()
    finally:
        conn.close()


def remove_item(path: Path, key: str) -> None:
    ensure_db(path)
    conn = _open_conn(path)
    try:
        conn.execute("DELETE FROM kv WHERE key=?", (key,))
        conn.commit()
    finally:
        conn.close()


def load_json(path: Path, key: str, default: Any = None) -> Any:
    raw = get_item(path, key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


def save_json(path: Path, key: str, value: Any) -> None:
    set_item(path, key, json.dumps(value, ensure_ascii=False))


def load_records(path: Path, key: str) -> List[Dict[str, Any]]:
    """Load a JSON array of objects; anything malformed reads as empty."""
    data = load_json(path, key, [])
    if not isinstance(data, list):
        return []
    return [x for x in data if isinstance(x, dict)]


def save_records(path: Path, key: str, items: List[Dict[str, Any]]) -> None:
    save_json(path, key, list(items))
