import logging
import subprocess

from ..config import settings

logger = logging.getLogger(__name__)

# Handle and body arrive as argv, so message text never needs AppleScript escaping.
SEND_SCRIPT = '''
on run argv
    set targetHandle to item 1 of argv
    set messageBody to item 2 of argv
    tell application "Messages"
        -- STRATEGY 1: Direct Chat ID lookup (most reliable)
        try
            set theChat to a reference to chat id ("iMessage;-;" & targetHandle)
            send messageBody to theChat
            return "SUCCESS: Direct iMessage Chat"
        on error
            try
                set theChat to a reference to chat id ("SMS;-;" & targetHandle)
                send messageBody to theChat
                return "SUCCESS: Direct SMS Chat"
            on error
                -- STRATEGY 2: Buddy method fallback
                try
                    send messageBody to buddy targetHandle of (1st service whose service type is iMessage)
                    return "SUCCESS: iMessage buddy"
                on error e
                    return "ERROR: All strategies failed. " & e
                end try
            end try
        end try
    end tell
end run
'''

PROBE_SCRIPT = 'tell application "Messages" to get name'


def normalize_handle(handle: str) -> str:
    """Ensure +1 prefix for bare US numbers; leave emails and E.164 alone."""
    raw = handle.strip()
    digits = raw.replace("-", "").replace(" ", "").replace("(", "").replace(")", "")
    if raw.startswith("+") or not digits.isdigit():
        return raw
    if len(digits) == 10:
        return "+1" + digits
    if len(digits) == 11 and digits.startswith("1"):
        return "+" + digits
    return raw


class iMessageBridge:
    """Sends through the local Messages app via osascript."""

    def __init__(self, *, timeout: float = settings.SEND_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    def send_message(self, handle: str, message: str) -> bool:
        """
        Single send attempt. No retries: a duplicate text to a real person is
        worse than a dropped one.
        """
        target = normalize_handle(handle)
        try:
            result = subprocess.run(
                ["osascript", "-", target, message],
                input=SEND_SCRIPT.encode("utf-8"),
                check=False,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error("[BRIDGE] osascript timed out after %.0fs sending to %s", self.timeout, target)
            return False
        except OSError as e:
            logger.error("[BRIDGE] Could not run osascript for %s: %s", target, e)
            return False

        output = result.stdout.decode("utf-8", errors="replace").strip()
        stderr = result.stderr.decode("utf-8", errors="replace").strip()

        if result.returncode != 0:
            logger.error("[BRIDGE] osascript failed. returncode=%s, stderr=%s", result.returncode, stderr)
            return False

        if output.startswith("ERROR"):
            logger.error("[BRIDGE] AppleScript error sending to %s: %s", target, output)
            return False

        logger.info("[BRIDGE] Sent to %s. Result: '%s'", target, output)
        return True

    def probe(self) -> bool:
        """True if Messages.app answers an AppleScript request (Automation grant)."""
        try:
            result = subprocess.run(
                ["osascript", "-e", PROBE_SCRIPT],
                check=False,
                capture_output=True,
                timeout=5,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.error("[BRIDGE] Messages.app probe failed: %s", e)
            return False
        return result.returncode == 0
