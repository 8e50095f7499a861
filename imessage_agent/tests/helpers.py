"""Builders for fake chat.db files and attributedBody blobs."""

from __future__ import annotations

import datetime
import sqlite3
from pathlib import Path

from imessage_agent.services.watcher import to_apple_time


class FakeChatDb:
    """Minimal chat.db with just the columns the watcher reads."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handles: dict[str, int] = {}
        conn = sqlite3.connect(str(path))
        conn.executescript(
            """
            CREATE TABLE handle (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, id TEXT);
            CREATE TABLE message (
                ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
                guid TEXT UNIQUE,
                text TEXT,
                attributedBody BLOB,
                handle_id INTEGER,
                date INTEGER,
                is_from_me INTEGER DEFAULT 0
            );
            """
        )
        conn.commit()
        conn.close()

    def _handle_rowid(self, conn: sqlite3.Connection, handle: str) -> int:
        if handle not in self._handles:
            cur = conn.execute("INSERT INTO handle (id) VALUES (?)", (handle,))
            self._handles[handle] = int(cur.lastrowid)
        return self._handles[handle]

    def add(
        self,
        guid: str,
        handle: str,
        *,
        text: str | None = None,
        blob: bytes | None = None,
        when: datetime.datetime | None = None,
        from_me: bool = False,
    ) -> None:
        when = when or datetime.datetime.now(datetime.timezone.utc)
        conn = sqlite3.connect(str(self.path))
        try:
            handle_id = self._handle_rowid(conn, handle)
            conn.execute(
                "INSERT INTO message (guid, text, attributedBody, handle_id, date, is_from_me) VALUES (?, ?, ?, ?, ?, ?)",
                (guid, text, blob, handle_id, to_apple_time(when), 1 if from_me else 0),
            )
            conn.commit()
        finally:
            conn.close()


def attributed_blob(text: str) -> bytes:
    """Wrap *text* the way typedstream archives an NSString payload."""
    payload = text.encode("utf-8")
    n = len(payload)
    if n < 0x80:
        prefix = bytes([n])
    elif n < 0x10000:
        prefix = b"\x81" + n.to_bytes(2, "big")
    else:
        prefix = b"\x82" + n.to_bytes(4, "big")
    return b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84\x12NSAttributedString\x00\x84\x84\x08NSObject\x00\x85\x92\x84\x84\x84\x08NSString\x01\x94\x84\x01\x2b" + prefix + payload + b"\x86\x84\x02iI\x01"
