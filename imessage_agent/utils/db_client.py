from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


def is_locked_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return "database is locked" in message or "database schema is locked" in message


@contextmanager
def connect_readonly(db_path: Path, *, timeout: float = 1.0) -> Iterator[sqlite3.Connection]:
    """Open a read-only SQLite connection. No retries: a locked or missing
    Messages db almost always means a missing Full Disk Access grant."""

    if not db_path.exists():
        raise FileNotFoundError(f"Messages db not found: {db_path}")

    uri = f"file:{db_path.as_posix()}?mode=ro"
    conn = sqlite3.connect(uri, uri=True, check_same_thread=False, timeout=timeout)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def fetch_all(conn: sqlite3.Connection, query: str, params: tuple = ()) -> list[sqlite3.Row]:
    cur = conn.execute(query, params)
    return list(cur.fetchall())


def fetch_one(conn: sqlite3.Connection, query: str, params: tuple = ()) -> sqlite3.Row | None:
    cur = conn.execute(query, params)
    return cur.fetchone()
