from __future__ import annotations

import datetime
import functools
import logging
import sqlite3
import threading
from typing import Callable, Optional

from .config import settings
from .services.archivist import Archivist
from .services.bridge import iMessageBridge
from .services.delegate import Delegate
from .services.dispatcher import Dispatcher
from .services.handle_queue import HandleQueues
from .services.interfaces import (
    AgentSettings,
    ConversationTurn,
    InboundMessage,
    TickSnapshot,
)
from .services.ledger import DedupLedger
from .services.policy import ReplyGate, canonicalize_handle, index_contacts
from .services.watcher import MessageStoreUnavailable, iMessageWatcher
from .utils.agent_store import AgentStore

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    if any(isinstance(h, logging.FileHandler) for h in root_logger.handlers):
        return

    level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(settings.LOG_FILE, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )

    # One line per automated delivery, for reviewing what went out
    audit_logger = logging.getLogger("imessage_agent.audit")
    audit_logger.propagate = False
    audit_handler = logging.FileHandler(settings.AUDIT_LOG_FILE, encoding="utf-8")
    audit_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    audit_logger.addHandler(audit_handler)
    audit_logger.setLevel(logging.INFO)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Orchestrator:
    """
    Poll → dedup → gate → prompt → generate → pace → send.

    A timer thread polls chat.db every ``poll_interval`` seconds and hands
    each new message to a per-handle queue; generation, pacing and sending
    run on the worker pool so a slow reply never delays the next poll.
    """

    def __init__(
        self,
        *,
        store: AgentStore,
        watcher: iMessageWatcher,
        delegate: Delegate,
        dispatcher: Dispatcher,
        archivist: Optional[Archivist] = None,
        queues: Optional[HandleQueues] = None,
        poll_interval: float = settings.POLL_INTERVAL_SECONDS,
        lookback_seconds: float = settings.LOOKBACK_SECONDS,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.watcher = watcher
        self.delegate = delegate
        self.dispatcher = dispatcher
        self.archivist = archivist or Archivist(store)
        self.ledger = DedupLedger(store)
        self.queues = queues or HandleQueues(max_workers=settings.MAX_WORKERS)
        self.poll_interval = poll_interval
        self.lookback = datetime.timedelta(seconds=lookback_seconds)
        self._clock = clock

        self._stop = threading.Event()
        self._timer: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Per-tick work
    # ------------------------------------------------------------------

    def load_snapshot(self) -> TickSnapshot:
        """Read settings, contacts and persona once; the tick uses only this copy."""
        return TickSnapshot(
            settings=AgentSettings.from_mapping(self.store.get_settings()),
            contacts=index_contacts(self.store.list_contacts()),
            persona=self.store.get_persona(),
        )

    def tick(self) -> int:
        """Poll once and queue unseen messages. Returns the number queued."""
        try:
            snapshot = self.load_snapshot()
        except sqlite3.Error as exc:
            logger.error("[TICK] Agent db unreadable; skipping tick: %s", exc)
            return 0

        cutoff = self._clock() - self.lookback
        try:
            messages = self.watcher.fetch_recent_inbound(cutoff)
        except MessageStoreUnavailable as exc:
            logger.error("[TICK] %s", exc)
            return 0

        if not messages:
            return 0

        try:
            fresh = set(self.ledger.unseen([m.id for m in messages]))
        except sqlite3.Error as exc:
            logger.warning("[TICK] Ledger pre-filter failed, queueing all: %s", exc)
            fresh = {m.id for m in messages}

        queued = 0
        for msg in messages:
            if msg.id not in fresh:
                continue
            key = canonicalize_handle(msg.sender_handle) or msg.sender_handle
            job = functools.partial(self.handle_incoming, msg, snapshot)
            if self.queues.submit(key, job):
                queued += 1

        if queued:
            logger.info("[TICK] Queued %d new message(s)", queued)
        return queued

    def handle_incoming(self, msg: InboundMessage, snapshot: TickSnapshot) -> str:
        """Run one message through the pipeline and return its outcome."""
        try:
            if not self.ledger.mark_if_new(msg.id):
                return "duplicate"
        except sqlite3.Error as exc:
            logger.error("[LEDGER] Could not record %s; leaving it for the next tick: %s", msg.id, exc)
            return "ledger_error"

        handle = canonicalize_handle(msg.sender_handle) or msg.sender_handle
        body = (msg.body or "").strip()
        logger.info("[INFO] New message from %s: %s", handle, body[:100])

        if not ReplyGate(snapshot).should_respond(handle):
            return "skipped"

        context = self.archivist.build_context(handle, body, snapshot)

        try:
            self.store.append_turn(ConversationTurn(handle=handle, direction="inbound", body=body))
        except sqlite3.Error as exc:
            logger.error("[TICK] Failed to log inbound turn for %s: %s", handle, exc)

        logger.info("Generating reply for %s...", handle)
        reply = self.delegate.generate(context.system_prompt, context.turns)
        if reply is None:
            logger.warning("[DELEGATE] No reply for %s; message stays processed", msg.id)
            return "no_reply"

        result = self.dispatcher.deliver(handle, reply, snapshot.settings)
        return result.value

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._timer is not None and self._timer.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        if self.queues.closed:
            # stop() shut the previous pool down
            self.queues = HandleQueues(max_workers=self.queues.max_workers)
        self._stop.clear()
        self._timer = threading.Thread(target=self._run_timer, name="poll-timer", daemon=True)
        self._timer.start()
        logger.info(
            "Agent running. Poll interval=%ss, lookback=%ss",
            self.poll_interval,
            self.lookback.total_seconds(),
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling, let in-flight messages finish, drop the rest."""
        self._stop.set()
        if self._timer is not None:
            self._timer.join(timeout)
        self.queues.close(wait=True)
        logger.info("Agent stopped.")

    def _run_timer(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.exception("Top-level error in tick: %s", e)
            if self._stop.wait(self.poll_interval):
                break


def build_orchestrator(store: Optional[AgentStore] = None) -> Orchestrator:
    store = store or AgentStore(settings.AGENT_DB_PATH)
    return Orchestrator(
        store=store,
        watcher=iMessageWatcher(chat_db_path=settings.CHAT_DB_PATH),
        delegate=Delegate(settings.LLM_PROVIDER),
        dispatcher=Dispatcher(iMessageBridge(), store),
    )
