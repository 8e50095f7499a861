"""Tests for the chat.db adapter."""

from __future__ import annotations

import datetime
from pathlib import Path

import pytest

from imessage_agent.services.watcher import (
    APPLE_EPOCH_OFFSET,
    MessageStoreUnavailable,
    from_apple_time,
    iMessageWatcher,
    to_apple_time,
)
from imessage_agent.tests.helpers import FakeChatDb, attributed_blob

UTC = datetime.timezone.utc


def _ago(seconds: float) -> datetime.datetime:
    return datetime.datetime.now(UTC) - datetime.timedelta(seconds=seconds)


class TestAppleTime:
    def test_round_trip_nanoseconds(self) -> None:
        when = datetime.datetime(2025, 6, 1, 12, 30, tzinfo=UTC)
        assert from_apple_time(to_apple_time(when)) == when

    def test_epoch_offset(self) -> None:
        when = datetime.datetime.fromtimestamp(APPLE_EPOCH_OFFSET, tz=UTC)
        assert to_apple_time(when) == 0

    def test_legacy_seconds_values(self) -> None:
        assert from_apple_time(86400) == datetime.datetime(2001, 1, 2, tzinfo=UTC)

    def test_naive_datetime_is_treated_as_utc(self) -> None:
        naive = datetime.datetime(2025, 1, 1)
        aware = naive.replace(tzinfo=UTC)
        assert to_apple_time(naive) == to_apple_time(aware)


class TestFetchRecentInbound:
    def test_returns_inbound_after_cutoff_in_order(self, chat_db: FakeChatDb) -> None:
        chat_db.add("g-old", "+15550001111", text="too old", when=_ago(600))
        chat_db.add("g-2", "+15550001111", text="second", when=_ago(10))
        chat_db.add("g-1", "+15550002222", text="first", when=_ago(30))
        chat_db.add("g-mine", "+15550001111", text="from me", when=_ago(5), from_me=True)

        watcher = iMessageWatcher(chat_db_path=chat_db.path)
        messages = watcher.fetch_recent_inbound(_ago(120))

        assert [m.id for m in messages] == ["g-1", "g-2"]
        assert messages[0].sender_handle == "+15550002222"
        assert messages[0].body == "first"
        assert messages[0].timestamp <= messages[1].timestamp

    def test_blob_only_rows_are_decoded(self, chat_db: FakeChatDb) -> None:
        chat_db.add("g-blob", "friend@example.com", blob=attributed_blob("hey what's up"), when=_ago(5))

        messages = iMessageWatcher(chat_db_path=chat_db.path).fetch_recent_inbound(_ago(60))

        assert len(messages) == 1
        assert messages[0].body == "hey what's up"
        assert messages[0].raw_blob is not None

    def test_empty_text_falls_back_to_blob(self, chat_db: FakeChatDb) -> None:
        chat_db.add("g-empty", "+15550001111", text="", blob=attributed_blob("from blob"), when=_ago(5))

        messages = iMessageWatcher(chat_db_path=chat_db.path).fetch_recent_inbound(_ago(60))

        assert [m.body for m in messages] == ["from blob"]

    def test_textless_rows_are_dropped(self, chat_db: FakeChatDb) -> None:
        chat_db.add("g-garbage", "+15550001111", blob=b"\x00\x01\x02 no marker", when=_ago(5))
        chat_db.add("g-blank", "+15550001111", text="   ", when=_ago(4))

        messages = iMessageWatcher(chat_db_path=chat_db.path).fetch_recent_inbound(_ago(60))

        assert messages == []

    def test_missing_db_fails_fast(self, tmp_path: Path) -> None:
        watcher = iMessageWatcher(chat_db_path=tmp_path / "nope.db")
        with pytest.raises(MessageStoreUnavailable):
            watcher.fetch_recent_inbound(_ago(60))

    def test_unreadable_db_is_reported(self, tmp_path: Path) -> None:
        bogus = tmp_path / "chat.db"
        bogus.write_bytes(b"this is not sqlite at all" * 20)
        watcher = iMessageWatcher(chat_db_path=bogus)
        with pytest.raises(MessageStoreUnavailable):
            watcher.fetch_recent_inbound(_ago(60))

    def test_does_not_write_to_store(self, chat_db: FakeChatDb) -> None:
        chat_db.add("g-1", "+15550001111", text="hi", when=_ago(5))
        before = chat_db.path.read_bytes()

        iMessageWatcher(chat_db_path=chat_db.path).fetch_recent_inbound(_ago(60))

        assert chat_db.path.read_bytes() == before


class TestVerifyPermissions:
    def test_missing_db(self, tmp_path: Path) -> None:
        watcher = iMessageWatcher(chat_db_path=tmp_path / "missing.db")
        with pytest.raises(MessageStoreUnavailable, match="not found"):
            watcher.verify_permissions()

    def test_existing_db(self, chat_db: FakeChatDb) -> None:
        iMessageWatcher(chat_db_path=chat_db.path).verify_permissions()


class TestFetchRecentContacts:
    def test_most_recent_first(self, chat_db: FakeChatDb) -> None:
        chat_db.add("g-1", "+15550001111", text="a", when=_ago(300))
        chat_db.add("g-2", "+15550002222", text="b", when=_ago(100))
        chat_db.add("g-3", "+15550001111", text="c", when=_ago(50))
        chat_db.add("g-4", "+15550003333", text="d", when=_ago(200))

        contacts = iMessageWatcher(chat_db_path=chat_db.path).fetch_recent_contacts(limit=2)

        assert [c["handle"] for c in contacts] == ["+15550001111", "+15550002222"]
