from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

from ..utils.agent_store import AgentStore
from .interfaces import AgentSettings, ConversationTurn, DeliveryResult, TransportBridge

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("imessage_agent.audit")


class Dispatcher:
    """Paces, sends and logs one generated reply."""

    def __init__(
        self,
        bridge: TransportBridge,
        store: AgentStore,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.bridge = bridge
        self.store = store
        self._sleep = sleep
        self._rng = rng or random.Random()

    def reply_delay_seconds(self, agent_settings: AgentSettings) -> float:
        """Uniform draw between the configured bounds (ms in settings)."""
        lo = agent_settings.reply_delay_min_ms
        hi = agent_settings.reply_delay_max_ms
        return self._rng.uniform(lo, hi) / 1000.0

    def deliver(self, handle: str, body: str, agent_settings: AgentSettings) -> DeliveryResult:
        delay = self.reply_delay_seconds(agent_settings)
        logger.info("[DISPATCH] Waiting %.1fs before replying to %s", delay, handle)
        self._sleep(delay)

        try:
            ok = self.bridge.send_message(handle, body)
        except Exception as exc:
            logger.error("[DISPATCH] Send raised for %s: %s", handle, exc)
            ok = False

        if not ok:
            logger.error("[DISPATCH] Send failed for %s; not retrying", handle)
            audit_logger.info("FAILED to=%s body=%r", handle, body)
            return DeliveryResult.FAILED

        audit_logger.info("SENT to=%s delay=%.1fs body=%r", handle, delay, body)
        try:
            self.store.append_turn(
                ConversationTurn(handle=handle, direction="outbound", body=body, auto_generated=True)
            )
        except Exception as exc:
            # Already delivered; a missing log row only thins future history.
            logger.error("[DISPATCH] Sent to %s but failed to log turn: %s", handle, exc)
        return DeliveryResult.SENT
