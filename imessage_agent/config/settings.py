from __future__ import annotations

import os
from pathlib import Path


def default_data_dir() -> Path:
    """Local state (agent database, logs). Defaults to ~/.imessage-agent."""
    return Path(os.getenv("IMESSAGE_AGENT_DATA_DIR") or Path.home() / ".imessage-agent")


DATA_DIR: Path = default_data_dir()

# Agent database: settings, contacts, persona, message log, dedup ledger
AGENT_DB_PATH: Path = Path(os.getenv("IMESSAGE_AGENT_DB") or DATA_DIR / "imessage-agent.db")

# Messages database path (read-only)
CHAT_DB_PATH: Path = Path(
    os.getenv("IMESSAGE_CHAT_DB") or Path.home() / "Library" / "Messages" / "chat.db"
)

# Poll interval for new messages (seconds)
POLL_INTERVAL_SECONDS: float = float(os.getenv("POLL_INTERVAL_SECONDS", "10"))

# Each tick rescans this far back; must exceed the poll interval so a late
# tick never leaves a gap. Overlap is filtered by the dedup ledger.
LOOKBACK_SECONDS: float = float(os.getenv("LOOKBACK_SECONDS", "120"))

# How many prior turns go into the prompt
HISTORY_WINDOW: int = 10

# Concurrent handle queues
MAX_WORKERS: int = int(os.getenv("IMESSAGE_AGENT_WORKERS", "4"))

# Logging
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "imessage_agent.log"
AUDIT_LOG_FILE: Path = LOG_DIR / "auto_replies_audit.log"
LOG_LEVEL: str = os.getenv("IMESSAGE_LOG_LEVEL", "INFO").upper()

# Anthropic
ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")

# OpenAI
OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")

SUPPORTED_PROVIDERS: tuple[str, ...] = ("anthropic", "openai")

# Priority:
# 1) Explicit env var always wins
# 2) Otherwise choose a provider that has credentials configured
# 3) Otherwise anthropic (fails at call time without a key)
_env_provider = (os.getenv("LLM_PROVIDER") or "").strip().lower()

if _env_provider:
    _default_provider = _env_provider
elif ANTHROPIC_API_KEY:
    _default_provider = "anthropic"
elif OPENAI_API_KEY:
    _default_provider = "openai"
else:
    _default_provider = "anthropic"

LLM_PROVIDER: str = _default_provider

LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
REPLY_MAX_TOKENS: int = 300
SYNTHESIS_MAX_TOKENS: int = 1000

# Platform send (osascript) timeout
SEND_TIMEOUT_SECONDS: float = float(os.getenv("SEND_TIMEOUT_SECONDS", "15"))

# Defaults seeded into the settings table; also the fallback for absent keys.
DEFAULT_AGENT_SETTINGS: dict[str, str] = {
    "agent_enabled": "0",
    "warmup_complete": "0",
    "reply_delay_min_ms": "2000",
    "reply_delay_max_ms": "8000",
}


def validate() -> None:
    """Reject combinations the daemon cannot run safely with."""
    if LOOKBACK_SECONDS <= POLL_INTERVAL_SECONDS:
        raise ValueError(
            f"LOOKBACK_SECONDS ({LOOKBACK_SECONDS}) must be greater than "
            f"POLL_INTERVAL_SECONDS ({POLL_INTERVAL_SECONDS}); otherwise a delayed tick can miss messages."
        )
    if LLM_PROVIDER not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported LLM_PROVIDER: {LLM_PROVIDER}")
