from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..config import prompts, settings
from ..utils.agent_store import AgentStore
from .interfaces import ConversationTurn, PersonaProfile, PromptTurn, TickSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplyContext:
    system_prompt: str
    turns: tuple[PromptTurn, ...]


def _role_for(turn: ConversationTurn) -> str:
    return "user" if turn.direction == "inbound" else "assistant"


class Archivist:
    """Builds the persona-conditioned prompt from the profile and recent turns."""

    def __init__(self, store: AgentStore, *, history_window: int = settings.HISTORY_WINDOW) -> None:
        self.store = store
        self.history_window = history_window

    def build_system_prompt(self, persona: Optional[PersonaProfile]) -> str:
        base_prompt = prompts.REPLY_SYSTEM_PROMPT

        if persona is None or not persona.summary.strip():
            return f"{base_prompt}\n\n{prompts.FALLBACK_STYLE_DIRECTIVE}"

        quirks = "\n".join(f"- {q}" for q in persona.quirks) or "- Be natural"
        phrases = "\n".join(f'- "{p}"' for p in persona.sample_phrases)
        section = prompts.PERSONA_SECTION_TEMPLATE.format(
            summary=persona.summary.strip(),
            tone=persona.tone.strip() or "casual",
            quirks=quirks,
            sample_phrases=phrases,
        )
        return f"{base_prompt}\n\n{section}"

    def load_history(self, handle: str) -> List[PromptTurn]:
        turns = self.store.recent_turns(handle, limit=self.history_window)
        return [PromptTurn(role=_role_for(t), content=t.body) for t in turns if t.body.strip()]

    def build_context(
        self,
        handle: str,
        incoming_body: str,
        snapshot: Optional[TickSnapshot] = None,
    ) -> ReplyContext:
        """System prompt plus the last N turns (oldest first) and the new message.

        The persona comes from *snapshot* when given, so every message in a
        tick sees the same profile version.
        """
        persona = snapshot.persona if snapshot is not None else self.store.get_persona()
        history = self.load_history(handle)
        turns = tuple(history) + (PromptTurn(role="user", content=incoming_body),)
        logger.debug("[ARCHIVIST] Context for %s: %d prior turn(s)", handle, len(history))
        return ReplyContext(system_prompt=self.build_system_prompt(persona), turns=turns)
