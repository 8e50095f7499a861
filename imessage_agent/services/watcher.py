from __future__ import annotations

import datetime
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any

from ..config import settings
from ..utils.attributed_body import extract_text
from ..utils.db_client import connect_readonly, fetch_all, is_locked_error
from .interfaces import InboundMessage

logger = logging.getLogger(__name__)

# chat.db counts from 2001-01-01 (Apple epoch)
APPLE_EPOCH_OFFSET = 978307200  # Seconds between Unix epoch (1970) and Apple epoch (2001)
_NANOS = 1_000_000_000


class MessageStoreUnavailable(RuntimeError):
    """chat.db is missing, unreadable or locked. Usually a missing Full Disk Access grant."""


def to_apple_time(when: datetime.datetime) -> int:
    """Unix datetime -> chat.db native units (nanoseconds since 2001)."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=datetime.timezone.utc)
    return int((when.timestamp() - APPLE_EPOCH_OFFSET) * _NANOS)


def from_apple_time(raw: int | float | None) -> datetime.datetime:
    """chat.db date column -> aware UTC datetime.

    Pre-High Sierra stores keep seconds; newer ones nanoseconds.
    """
    value = float(raw or 0)
    if value > 1e12:
        value = value / _NANOS
    return datetime.datetime.fromtimestamp(value + APPLE_EPOCH_OFFSET, tz=datetime.timezone.utc)


class iMessageWatcher:
    """Ingress service: read-only queries against chat.db."""

    def __init__(self, *, chat_db_path: Path = settings.CHAT_DB_PATH) -> None:
        self.chat_db_path = Path(chat_db_path)

    def verify_permissions(self) -> None:
        # On macOS, Full Disk Access is typically required for ~/Library/Messages.
        if not self.chat_db_path.exists():
            raise MessageStoreUnavailable(
                f"Messages db not found at {self.chat_db_path}. Is Messages enabled?"
            )
        # os.access can return True even when TCC blocks access, but it's still a useful hint.
        if not os.access(self.chat_db_path, os.R_OK):
            raise MessageStoreUnavailable(
                "No read access to chat.db. Grant your terminal/python Full Disk Access "
                "(System Settings → Privacy & Security → Full Disk Access)."
            )

    def _query(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with connect_readonly(self.chat_db_path) as conn:
                return fetch_all(conn, query, params)
        except FileNotFoundError as exc:
            raise MessageStoreUnavailable(str(exc)) from exc
        except sqlite3.Error as exc:
            if is_locked_error(exc):
                raise MessageStoreUnavailable(f"Messages db is locked: {exc}") from exc
            raise MessageStoreUnavailable(
                f"Cannot read {self.chat_db_path} (grant Full Disk Access?): {exc}"
            ) from exc

    def fetch_recent_inbound(self, cutoff: datetime.datetime) -> list[InboundMessage]:
        """Inbound messages newer than *cutoff*, oldest first, with text resolved."""

        query = """
        SELECT
            m.guid AS id,
            m.text AS body,
            m.attributedBody AS attributed_body,
            h.id AS handle,
            m.date AS date
        FROM message m
        JOIN handle h ON h.ROWID = m.handle_id
        WHERE m.is_from_me = 0
          AND (m.text IS NOT NULL OR m.attributedBody IS NOT NULL)
          AND m.date > ?
        ORDER BY m.date ASC
        """

        rows = self._query(query, (to_apple_time(cutoff),))

        messages: list[InboundMessage] = []
        for r in rows:
            body = str(r["body"] or "").strip()
            blob = r["attributed_body"]
            if not body and blob:
                body = extract_text(blob) or ""
            if not body:
                logger.debug("[WATCHER] Skipping textless message %s", r["id"])
                continue
            messages.append(
                InboundMessage(
                    id=str(r["id"]),
                    sender_handle=str(r["handle"]),
                    body=body,
                    timestamp=from_apple_time(r["date"]),
                    raw_blob=bytes(blob) if blob else None,
                )
            )

        # Store order is a hint only; sort stably by arrival time.
        messages.sort(key=lambda m: m.timestamp)
        if messages:
            logger.info("[WATCHER] %d inbound message(s) since %s", len(messages), cutoff.isoformat())
        return messages

    def fetch_recent_contacts(self, limit: int = 100) -> list[dict[str, Any]]:
        """Handles ordered by most recent message, for seeding the allowlist."""

        query = """
        SELECT h.id AS handle, MAX(m.date) AS last_date
        FROM handle h
        JOIN message m ON m.handle_id = h.ROWID
        GROUP BY h.id
        ORDER BY last_date DESC
        LIMIT ?
        """
        rows = self._query(query, (limit,))
        return [
            {"handle": str(r["handle"]), "last_message_at": from_apple_time(r["last_date"])}
            for r in rows
        ]
