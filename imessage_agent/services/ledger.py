from __future__ import annotations

import logging

from ..utils.agent_store import AgentStore

logger = logging.getLogger(__name__)


class DedupLedger:
    """Persistent set of message ids already acted on.

    The primary-key insert is the serialization point: two overlapping ticks
    racing on the same id get exactly one ``True``.
    """

    def __init__(self, store: AgentStore) -> None:
        self.store = store

    def mark_if_new(self, message_id: str) -> bool:
        """Insert *message_id*; True if it was not there before.

        Write errors propagate so the caller can leave the message for the
        next tick instead of dropping it.
        """
        is_new = self.store.mark_if_new(message_id)
        if not is_new:
            logger.debug("[LEDGER] %s already processed", message_id)
        return is_new

    def unseen(self, message_ids: list[str]) -> list[str]:
        """Cheap pre-filter for a poll batch. Not a substitute for mark_if_new."""
        seen = self.store.seen_ids(message_ids)
        return [mid for mid in message_ids if mid not in seen]
