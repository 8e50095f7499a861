from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Mapping

from .interfaces import Contact, TickSnapshot

logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"[^0-9+]")
_PHONE_PUNCT_RE = re.compile(r"^[+0-9()\-.\s]+$")


def canonicalize_handle(handle: str) -> str:
    """Best-effort canonicalization so chat.db handles match allowlist entries.

    - Phone numbers collapse to ``+digits`` (10-digit US numbers get ``+1``).
    - Emails are lower-cased.
    - Anything else is only stripped.
    """

    raw = (handle or "").strip()
    if not raw:
        return ""

    if "@" in raw:
        return raw.lower()

    if _PHONE_PUNCT_RE.match(raw) and any(ch.isdigit() for ch in raw):
        cleaned = _PHONE_RE.sub("", raw)
        digits = re.sub(r"\D", "", cleaned)
        if not cleaned.startswith("+") and len(digits) == 10:
            return "+1" + digits
        return "+" + digits

    return raw


def index_contacts(contacts: list[Contact]) -> dict[str, Contact]:
    """Key contacts by canonical handle for snapshot lookups."""
    indexed: dict[str, Contact] = {}
    for contact in contacts:
        key = canonicalize_handle(contact.handle)
        if key:
            indexed[key] = contact
    return indexed


def _mode_always(contact: Contact) -> bool:
    return True


# Per-contact reply strategies. Unknown modes never reply.
MODE_HANDLERS: dict[str, Callable[[Contact], bool]] = {
    "always": _mode_always,
}


@dataclass(frozen=True)
class InboundDecision:
    respond: bool
    handle: str
    reason: str  # 'agent_disabled' | 'unknown' | 'auto_reply_off' | 'mode:<name>'


class ReplyGate:
    """Allowlist and mode gate, evaluated per message against a tick snapshot."""

    def __init__(self, snapshot: TickSnapshot) -> None:
        self.snapshot = snapshot

    @property
    def contacts(self) -> Mapping[str, Contact]:
        return self.snapshot.contacts

    def decide(self, handle: str) -> InboundDecision:
        """Single source of truth for inbound routing decisions."""
        canon = canonicalize_handle(handle)

        if not self.snapshot.settings.agent_enabled:
            return InboundDecision(respond=False, handle=canon, reason="agent_disabled")

        contact = self.contacts.get(canon)
        if contact is None:
            return InboundDecision(respond=False, handle=canon, reason="unknown")

        if not contact.auto_reply_enabled:
            return InboundDecision(respond=False, handle=canon, reason="auto_reply_off")

        handler = MODE_HANDLERS.get(contact.mode)
        if handler is None:
            logger.warning("[GATE] Unknown mode %r for %s; not replying", contact.mode, canon)
            return InboundDecision(respond=False, handle=canon, reason=f"mode:{contact.mode}")

        return InboundDecision(respond=handler(contact), handle=canon, reason=f"mode:{contact.mode}")

    def should_respond(self, handle: str) -> bool:
        decision = self.decide(handle)
        if not decision.respond:
            logger.info("[GATE] Not replying to %s (%s)", decision.handle, decision.reason)
        return decision.respond
