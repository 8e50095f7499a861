"""
imessage-agent - command-line wrapper around the reply daemon

Usage:
    imessage-agent run                      Start polling and replying
    imessage-agent synthesize-persona       Rebuild the style profile from examples
    imessage-agent check-access             Verify chat.db and Messages.app access
    imessage-agent allow HANDLE [--off]     Add/update an allowlisted contact
    imessage-agent set KEY VALUE            Change a runtime setting
    imessage-agent log [--limit N]          Show recent automated replies
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from .config import settings
from .orchestrator import build_orchestrator, configure_logging
from .services.bridge import iMessageBridge
from .services.delegate import Delegate, PersonaSynthesisError
from .services.watcher import MessageStoreUnavailable, iMessageWatcher
from .utils.agent_store import AgentStore


def _open_store() -> AgentStore:
    store = AgentStore(settings.AGENT_DB_PATH)
    store.initialize()
    return store


def cmd_run(args) -> int:
    """Run the daemon until SIGINT/SIGTERM."""
    logger = logging.getLogger("imessage_agent")
    try:
        settings.validate()
    except ValueError as e:
        logger.error(str(e))
        return 1

    store = _open_store()
    orchestrator = build_orchestrator(store)

    try:
        orchestrator.watcher.verify_permissions()
    except MessageStoreUnavailable as e:
        # Not fatal: each tick reports it again until access is granted.
        logger.error("[INIT] %s", e)

    done = threading.Event()

    def _request_stop(signum, frame):
        logger.info("Received signal %s; stopping after in-flight messages.", signum)
        done.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    orchestrator.start()
    while not done.wait(1.0):
        pass
    orchestrator.stop()
    return 0


def cmd_synthesize(args) -> int:
    """Rebuild the persona profile from stored examples."""
    store = _open_store()
    try:
        profile = Delegate(settings.LLM_PROVIDER).synthesize_persona(store)
    except PersonaSynthesisError as e:
        print(f"❌ {e}")
        return 1
    print(f"✅ Persona updated (tone: {profile.tone or 'n/a'})")
    for quirk in profile.quirks:
        print(f"   - {quirk}")
    return 0


def cmd_check_access(args) -> int:
    """Check chat.db readability and Messages.app automation."""
    ok = True
    watcher = iMessageWatcher(chat_db_path=settings.CHAT_DB_PATH)
    try:
        watcher.verify_permissions()
        recent = watcher.fetch_recent_contacts(limit=5)
        print(f"💬 chat.db: ✅ readable ({len(recent)} recent handle(s))")
    except MessageStoreUnavailable as e:
        print(f"💬 chat.db: ❌ {e}")
        ok = False

    if iMessageBridge().probe():
        print("📨 Messages.app: ✅ scriptable")
    else:
        print("📨 Messages.app: ❌ grant Automation access (System Settings → Privacy & Security → Automation)")
        ok = False
    return 0 if ok else 1


def cmd_allow(args) -> int:
    store = _open_store()
    store.upsert_contact(args.handle, display_name=args.name or "", auto_reply=not args.off, mode=args.mode)
    state = "off" if args.off else "on"
    print(f"✅ {args.handle}: auto-reply {state} (mode={args.mode})")
    return 0


def cmd_set(args) -> int:
    store = _open_store()
    store.set_setting(args.key, args.value)
    print(f"✅ {args.key} = {args.value}")
    return 0


def cmd_log(args) -> int:
    """Print the most recent automated replies, newest first."""
    store = _open_store()
    replies = store.recent_auto_replies(limit=args.limit)
    if not replies:
        print("No automated replies yet.")
        return 0
    for turn in replies:
        print(f"{turn.sent_at}  → {turn.handle}: {turn.body}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="imessage-agent", description="iMessage auto-reply agent")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the daemon")
    subparsers.add_parser("synthesize-persona", help="Rebuild the persona profile")
    subparsers.add_parser("check-access", help="Check chat.db and Messages.app access")

    allow_parser = subparsers.add_parser("allow", help="Allowlist a handle")
    allow_parser.add_argument("handle")
    allow_parser.add_argument("--name", default="")
    allow_parser.add_argument("--mode", default="always")
    allow_parser.add_argument("--off", action="store_true", help="Keep the contact but disable auto-reply")

    set_parser = subparsers.add_parser("set", help="Set a runtime setting")
    set_parser.add_argument("key", choices=sorted(settings.DEFAULT_AGENT_SETTINGS))
    set_parser.add_argument("value")

    log_parser = subparsers.add_parser("log", help="Show recent automated replies")
    log_parser.add_argument("--limit", type=int, default=20)

    args = parser.parse_args(argv)
    configure_logging()

    commands = {
        None: cmd_run,
        "run": cmd_run,
        "synthesize-persona": cmd_synthesize,
        "check-access": cmd_check_access,
        "allow": cmd_allow,
        "set": cmd_set,
        "log": cmd_log,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
