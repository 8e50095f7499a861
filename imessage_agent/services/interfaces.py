from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Protocol

from ..config import settings


@dataclass(frozen=True)
class InboundMessage:
    """One inbound row observed in chat.db."""

    id: str
    sender_handle: str
    body: str | None
    timestamp: datetime.datetime
    raw_blob: bytes | None = field(default=None, repr=False)


@dataclass(frozen=True)
class Contact:
    handle: str
    display_name: str = ""
    auto_reply_enabled: bool = False
    mode: str = "always"


@dataclass(frozen=True)
class ConversationTurn:
    handle: str
    direction: str  # 'inbound' | 'outbound'
    body: str
    auto_generated: bool = False
    sent_at: str | None = None


@dataclass(frozen=True)
class PersonaProfile:
    summary: str
    tone: str = ""
    quirks: tuple[str, ...] = ()
    sample_phrases: tuple[str, ...] = ()
    updated_at: str | None = None


@dataclass(frozen=True)
class PromptTurn:
    role: str  # 'user' (their turn) | 'assistant' (our turn)
    content: str


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_bool(raw: str | None, default: str) -> bool:
    value = raw if raw is not None else default
    return str(value).strip().lower() in _TRUE_VALUES


def _parse_ms(raw: str | None, default: str) -> int:
    try:
        value = int(float(str(raw).strip())) if raw is not None else int(default)
    except (ValueError, OverflowError):
        value = int(default)
    return max(0, value)


@dataclass(frozen=True)
class AgentSettings:
    """Immutable view of the settings table, loaded once per tick."""

    agent_enabled: bool = False
    warmup_complete: bool = False
    reply_delay_min_ms: int = 2000
    reply_delay_max_ms: int = 8000

    @classmethod
    def from_mapping(cls, raw: Mapping[str, str]) -> "AgentSettings":
        defaults = settings.DEFAULT_AGENT_SETTINGS
        lo = _parse_ms(raw.get("reply_delay_min_ms"), defaults["reply_delay_min_ms"])
        hi = _parse_ms(raw.get("reply_delay_max_ms"), defaults["reply_delay_max_ms"])
        if lo > hi:
            lo, hi = hi, lo
        return cls(
            agent_enabled=_parse_bool(raw.get("agent_enabled"), defaults["agent_enabled"]),
            warmup_complete=_parse_bool(raw.get("warmup_complete"), defaults["warmup_complete"]),
            reply_delay_min_ms=lo,
            reply_delay_max_ms=hi,
        )


@dataclass(frozen=True)
class TickSnapshot:
    """Everything a tick reads from the admin-owned tables, captured once."""

    settings: AgentSettings
    contacts: Mapping[str, Contact]
    persona: PersonaProfile | None = None


class DeliveryResult(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class TransportBridge(Protocol):
    def send_message(self, handle: str, message: str) -> bool:
        """Sends a message to the specified handle."""
        ...
