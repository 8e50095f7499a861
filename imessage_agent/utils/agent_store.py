"""Local agent database.

One SQLite file holds the admin-owned tables (settings, contacts, persona
examples, persona summary) and the two tables the daemon appends to
(``message_log`` and the ``seen_messages`` dedup ledger).

Every operation opens its own short-lived connection, so the store is safe
to share between worker threads. Each write is a single-row upsert.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ..config import settings
from ..services.interfaces import Contact, ConversationTurn, PersonaProfile
from .db_client import fetch_all, fetch_one

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    phone_or_handle TEXT UNIQUE NOT NULL,
    display_name TEXT,
    auto_reply INTEGER DEFAULT 0,
    mode TEXT DEFAULT 'always',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS persona (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category TEXT NOT NULL,
    example TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS persona_summary (
    id INTEGER PRIMARY KEY DEFAULT 1,
    summary TEXT,
    tone TEXT,
    quirks TEXT,
    sample_phrases TEXT,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS message_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    phone_or_handle TEXT NOT NULL,
    direction TEXT NOT NULL,
    body TEXT NOT NULL,
    auto_generated INTEGER DEFAULT 0,
    sent_at DATETIME DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_message_log_handle_sent
    ON message_log (phone_or_handle, sent_at);

CREATE TABLE IF NOT EXISTS seen_messages (
    message_id TEXT PRIMARY KEY,
    processed_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


def _json_list(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("[STORE] Unreadable persona list column; treating as empty")
        return ()
    if not isinstance(data, list):
        return ()
    return tuple(str(item) for item in data if str(item).strip())


class AgentStore:
    """SQLite-backed persistence for the agent."""

    def __init__(self, db_path: Path = settings.AGENT_DB_PATH, *, busy_timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create tables and seed default settings (existing values win)."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            conn.executemany(
                "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
                list(settings.DEFAULT_AGENT_SETTINGS.items()),
            )
        logger.info("[STORE] Agent db ready at %s", self.db_path)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> Dict[str, str]:
        with self._connect() as conn:
            rows = fetch_all(conn, "SELECT key, value FROM settings")
        return {str(r["key"]): str(r["value"]) for r in rows}

    def set_setting(self, key: str, value: Any) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, str(value)),
            )

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_contact(row: sqlite3.Row) -> Contact:
        return Contact(
            handle=str(row["phone_or_handle"]),
            display_name=str(row["display_name"] or ""),
            auto_reply_enabled=bool(row["auto_reply"]),
            mode=str(row["mode"] or "always"),
        )

    def get_contact(self, handle: str) -> Optional[Contact]:
        with self._connect() as conn:
            row = fetch_one(
                conn,
                "SELECT phone_or_handle, display_name, auto_reply, mode FROM contacts WHERE phone_or_handle = ?",
                (handle,),
            )
        return self._row_to_contact(row) if row else None

    def list_contacts(self) -> List[Contact]:
        with self._connect() as conn:
            rows = fetch_all(
                conn,
                "SELECT phone_or_handle, display_name, auto_reply, mode FROM contacts ORDER BY display_name",
            )
        return [self._row_to_contact(r) for r in rows]

    def upsert_contact(
        self,
        handle: str,
        *,
        display_name: str = "",
        auto_reply: bool = True,
        mode: str = "always",
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO contacts (phone_or_handle, display_name, auto_reply, mode)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(phone_or_handle) DO UPDATE SET
                    display_name = excluded.display_name,
                    auto_reply = excluded.auto_reply,
                    mode = excluded.mode,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (handle, display_name, 1 if auto_reply else 0, mode or "always"),
            )

    # ------------------------------------------------------------------
    # Persona
    # ------------------------------------------------------------------

    def add_persona_example(self, category: str, example: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO persona (category, example) VALUES (?, ?)",
                (category, example),
            )

    def list_persona_examples(self) -> List[Dict[str, str]]:
        with self._connect() as conn:
            rows = fetch_all(conn, "SELECT category, example FROM persona ORDER BY created_at, id")
        return [{"category": str(r["category"]), "example": str(r["example"])} for r in rows]

    def get_persona(self) -> Optional[PersonaProfile]:
        with self._connect() as conn:
            row = fetch_one(
                conn,
                "SELECT summary, tone, quirks, sample_phrases, updated_at FROM persona_summary WHERE id = 1",
            )
        if row is None or not row["summary"]:
            return None
        return PersonaProfile(
            summary=str(row["summary"]),
            tone=str(row["tone"] or ""),
            quirks=_json_list(row["quirks"]),
            sample_phrases=_json_list(row["sample_phrases"]),
            updated_at=str(row["updated_at"]) if row["updated_at"] else None,
        )

    def replace_persona(self, profile: PersonaProfile) -> None:
        """Swap the singleton profile in one transaction and mark warmup done."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO persona_summary (id, summary, tone, quirks, sample_phrases, updated_at)
                VALUES (1, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (
                    profile.summary,
                    profile.tone,
                    json.dumps(list(profile.quirks), ensure_ascii=False),
                    json.dumps(list(profile.sample_phrases), ensure_ascii=False),
                ),
            )
            conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES ('warmup_complete', '1')")

    # ------------------------------------------------------------------
    # Dedup ledger
    # ------------------------------------------------------------------

    def mark_if_new(self, message_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO seen_messages (message_id) VALUES (?)",
                (message_id,),
            )
            return cur.rowcount == 1

    def seen_ids(self, message_ids: List[str]) -> set[str]:
        """Subset of *message_ids* already in the ledger (read-only)."""
        if not message_ids:
            return set()
        placeholders = ",".join(["?"] * len(message_ids))
        with self._connect() as conn:
            rows = fetch_all(
                conn,
                f"SELECT message_id FROM seen_messages WHERE message_id IN ({placeholders})",
                tuple(message_ids),
            )
        return {str(r["message_id"]) for r in rows}

    # ------------------------------------------------------------------
    # Conversation log
    # ------------------------------------------------------------------

    def append_turn(self, turn: ConversationTurn) -> None:
        with self._connect() as conn:
            if turn.sent_at:
                conn.execute(
                    """
                    INSERT INTO message_log (phone_or_handle, direction, body, auto_generated, sent_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (turn.handle, turn.direction, turn.body, 1 if turn.auto_generated else 0, turn.sent_at),
                )
            else:
                conn.execute(
                    """
                    INSERT INTO message_log (phone_or_handle, direction, body, auto_generated)
                    VALUES (?, ?, ?, ?)
                    """,
                    (turn.handle, turn.direction, turn.body, 1 if turn.auto_generated else 0),
                )

    @staticmethod
    def _row_to_turn(row: sqlite3.Row) -> ConversationTurn:
        return ConversationTurn(
            handle=str(row["phone_or_handle"]),
            direction=str(row["direction"]),
            body=str(row["body"]),
            auto_generated=bool(row["auto_generated"]),
            sent_at=str(row["sent_at"]) if row["sent_at"] else None,
        )

    def recent_turns(self, handle: str, limit: int = settings.HISTORY_WINDOW) -> List[ConversationTurn]:
        """Newest *limit* turns for *handle*, returned oldest-first."""
        with self._connect() as conn:
            rows = fetch_all(
                conn,
                """
                SELECT phone_or_handle, direction, body, auto_generated, sent_at
                FROM message_log
                WHERE phone_or_handle = ?
                ORDER BY sent_at DESC, id DESC
                LIMIT ?
                """,
                (handle, limit),
            )
        return [self._row_to_turn(r) for r in reversed(rows)]

    def recent_auto_replies(self, limit: int = 200) -> List[ConversationTurn]:
        with self._connect() as conn:
            rows = fetch_all(
                conn,
                """
                SELECT phone_or_handle, direction, body, auto_generated, sent_at
                FROM message_log
                WHERE direction = 'outbound' AND auto_generated = 1
                ORDER BY sent_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
        return [self._row_to_turn(r) for r in rows]
