"""Tests for pacing, sending and the osascript bridge."""

from __future__ import annotations

import random
import subprocess
from unittest.mock import MagicMock, patch

from imessage_agent.services.bridge import iMessageBridge, normalize_handle
from imessage_agent.services.dispatcher import Dispatcher
from imessage_agent.services.interfaces import AgentSettings, DeliveryResult
from imessage_agent.utils.agent_store import AgentStore

HANDLE = "+15550001111"


class FakeBridge:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.sent: list[tuple[str, str]] = []

    def send_message(self, handle: str, message: str) -> bool:
        self.sent.append((handle, message))
        return self.ok


class TestDispatcher:
    def _dispatcher(self, store: AgentStore, bridge: FakeBridge, sleeps: list[float]) -> Dispatcher:
        return Dispatcher(bridge, store, sleep=sleeps.append, rng=random.Random(7))

    def test_delay_within_bounds(self, store: AgentStore) -> None:
        sleeps: list[float] = []
        dispatcher = self._dispatcher(store, FakeBridge(), sleeps)
        agent_settings = AgentSettings(reply_delay_min_ms=1500, reply_delay_max_ms=4000)

        for _ in range(50):
            dispatcher.deliver(HANDLE, "ok", agent_settings)

        assert len(sleeps) == 50
        assert all(1.5 <= s <= 4.0 for s in sleeps)
        assert len(set(sleeps)) > 1

    def test_equal_bounds_are_exact(self, store: AgentStore) -> None:
        sleeps: list[float] = []
        dispatcher = self._dispatcher(store, FakeBridge(), sleeps)
        dispatcher.deliver(HANDLE, "ok", AgentSettings(reply_delay_min_ms=3000, reply_delay_max_ms=3000))
        assert sleeps == [3.0]

    def test_success_logs_auto_generated_turn(self, store: AgentStore) -> None:
        bridge = FakeBridge()
        result = self._dispatcher(store, bridge, []).deliver(HANDLE, "haha not much", AgentSettings())

        assert result is DeliveryResult.SENT
        assert bridge.sent == [(HANDLE, "haha not much")]
        turns = store.recent_turns(HANDLE)
        assert len(turns) == 1
        assert turns[0].direction == "outbound"
        assert turns[0].auto_generated is True

    def test_failure_is_not_retried_or_logged(self, store: AgentStore) -> None:
        bridge = FakeBridge(ok=False)
        result = self._dispatcher(store, bridge, []).deliver(HANDLE, "hello", AgentSettings())

        assert result is DeliveryResult.FAILED
        assert len(bridge.sent) == 1
        assert store.recent_turns(HANDLE) == []

    def test_bridge_exception_counts_as_failure(self, store: AgentStore) -> None:
        bridge = MagicMock()
        bridge.send_message.side_effect = RuntimeError("boom")

        result = Dispatcher(bridge, store, sleep=lambda s: None).deliver(HANDLE, "hello", AgentSettings())

        assert result is DeliveryResult.FAILED
        bridge.send_message.assert_called_once()


class TestNormalizeHandle:
    def test_bare_ten_digits(self) -> None:
        assert normalize_handle("5550001111") == "+15550001111"

    def test_eleven_digits_with_country_code(self) -> None:
        assert normalize_handle("1 555 000 1111") == "+15550001111"

    def test_email_untouched(self) -> None:
        assert normalize_handle("friend@example.com") == "friend@example.com"

    def test_e164_untouched(self) -> None:
        assert normalize_handle("+447700900123") == "+447700900123"


class TestiMessageBridge:
    def _completed(self, returncode: int = 0, stdout: bytes = b"SUCCESS: Direct iMessage Chat\n") -> MagicMock:
        return MagicMock(returncode=returncode, stdout=stdout, stderr=b"")

    @patch("imessage_agent.services.bridge.subprocess.run")
    def test_passes_handle_and_body_as_argv(self, mock_run: MagicMock) -> None:
        mock_run.return_value = self._completed()
        body = 'he said "hi" \\ then left'

        assert iMessageBridge(timeout=5).send_message("5550001111", body) is True

        args, kwargs = mock_run.call_args
        assert args[0] == ["osascript", "-", "+15550001111", body]
        assert b"on run argv" in kwargs["input"]
        assert kwargs["timeout"] == 5
        mock_run.assert_called_once()

    @patch("imessage_agent.services.bridge.subprocess.run")
    def test_applescript_error_output(self, mock_run: MagicMock) -> None:
        mock_run.return_value = self._completed(stdout=b"ERROR: All strategies failed. nope")
        assert iMessageBridge().send_message(HANDLE, "hi") is False
        mock_run.assert_called_once()

    @patch("imessage_agent.services.bridge.subprocess.run")
    def test_nonzero_exit(self, mock_run: MagicMock) -> None:
        mock_run.return_value = self._completed(returncode=1, stdout=b"")
        assert iMessageBridge().send_message(HANDLE, "hi") is False

    @patch("imessage_agent.services.bridge.subprocess.run")
    def test_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="osascript", timeout=1)
        assert iMessageBridge(timeout=1).send_message(HANDLE, "hi") is False
        mock_run.assert_called_once()

    @patch("imessage_agent.services.bridge.subprocess.run")
    def test_osascript_missing(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError("osascript")
        assert iMessageBridge().send_message(HANDLE, "hi") is False

    @patch("imessage_agent.services.bridge.subprocess.run")
    def test_probe(self, mock_run: MagicMock) -> None:
        mock_run.return_value = self._completed(stdout=b"Messages")
        assert iMessageBridge().probe() is True
        mock_run.return_value = self._completed(returncode=1)
        assert iMessageBridge().probe() is False
