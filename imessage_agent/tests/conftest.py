from __future__ import annotations

from pathlib import Path

import pytest

from imessage_agent.tests.helpers import FakeChatDb
from imessage_agent.utils.agent_store import AgentStore


@pytest.fixture
def chat_db(tmp_path: Path) -> FakeChatDb:
    return FakeChatDb(tmp_path / "chat.db")


@pytest.fixture
def store(tmp_path: Path) -> AgentStore:
    s = AgentStore(tmp_path / "agent.db")
    s.initialize()
    return s
