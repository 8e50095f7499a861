from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

import anthropic
import httpx
import openai

from ..config import prompts, settings
from ..utils.agent_store import AgentStore
from .interfaces import PersonaProfile, PromptTurn

logger = logging.getLogger(__name__)


class MalformedResponse(ValueError):
    """The provider answered, but not in the shape we read."""


# Errors that mean "this call failed", not "the daemon is broken".
UPSTREAM_ERRORS: tuple[type[BaseException], ...] = (
    anthropic.APIError,
    openai.OpenAIError,
    httpx.HTTPError,
    MalformedResponse,
)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


class PersonaSynthesisError(RuntimeError):
    """Synthesis could not produce a complete profile; nothing was written."""


def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN_RE.sub("", cleaned)
        cleaned = _FENCE_CLOSE_RE.sub("", cleaned)
    return cleaned.strip()


def _string_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise PersonaSynthesisError(f"Persona field '{field_name}' must be a list")
    return tuple(str(item).strip() for item in value if str(item).strip())


def parse_persona(raw_text: str) -> PersonaProfile:
    """Parse synthesis output into a profile, or raise PersonaSynthesisError."""
    try:
        data = json.loads(strip_code_fences(raw_text))
    except ValueError as exc:
        raise PersonaSynthesisError(f"Persona output is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise PersonaSynthesisError("Persona output must be a JSON object")

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise PersonaSynthesisError("Persona output has no summary")
    tone = data.get("tone") or ""
    if not isinstance(tone, str):
        raise PersonaSynthesisError("Persona field 'tone' must be a string")

    return PersonaProfile(
        summary=summary.strip(),
        tone=tone.strip(),
        quirks=_string_list(data.get("quirks", []), "quirks"),
        sample_phrases=_string_list(data.get("sample_phrases", []), "sample_phrases"),
    )


class Delegate:
    """Execution service: LLM call to generate the reply text."""

    def __init__(
        self,
        provider: str | None = None,
        *,
        client: Any = None,
        timeout: float = settings.LLM_TIMEOUT_SECONDS,
    ) -> None:
        self.provider = (provider or settings.LLM_PROVIDER).lower()
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        http_timeout = httpx.Timeout(self.timeout, connect=10.0)
        if self.provider == "anthropic":
            self._client = anthropic.Anthropic(api_key=settings.ANTHROPIC_API_KEY, timeout=http_timeout)
        elif self.provider == "openai":
            self._client = openai.OpenAI(api_key=settings.OPENAI_API_KEY, timeout=http_timeout)
        else:
            raise ValueError(f"Unsupported LLM provider: {self.provider}")
        return self._client

    @staticmethod
    def _clean_output(text: str) -> str:
        """Strip wrappers models sometimes put around the message."""
        text = (text or "").strip()
        if not text:
            return ""

        text = re.sub(r"<thinking>.*?</thinking>", "", text, flags=re.DOTALL | re.IGNORECASE).strip()

        # Remove "Reply:" / "Here's my reply:" preambles
        text = re.sub(r"^(?:response|draft|message|reply|me):\s*", "", text, flags=re.IGNORECASE)
        text = re.sub(
            r"^(?:here\'?s?|my)\s+(?:is\s+)?(?:my\s+)?(?:draft|response|reply|message)(?: is)?[:.]?\s*",
            "",
            text,
            flags=re.IGNORECASE,
        )

        # Remove quotes if the entire message is quoted
        if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
            text = text[1:-1]

        return text.strip()

    def _complete(self, system_prompt: str, messages: list[dict[str, str]], max_tokens: int) -> str:
        client = self._get_client()

        if self.provider == "anthropic":
            resp = client.messages.create(
                model=settings.ANTHROPIC_MODEL,
                system=system_prompt,
                messages=messages,
                max_tokens=max_tokens,
            )
            try:
                blocks = [getattr(b, "text", "") for b in resp.content if getattr(b, "type", "text") == "text"]
            except (AttributeError, TypeError) as exc:
                raise MalformedResponse(f"Unreadable Anthropic response: {exc}") from exc
            if not blocks:
                raise MalformedResponse("Anthropic response had no text block")
            return str(blocks[0])

        if self.provider == "openai":
            resp = client.chat.completions.create(
                model=settings.OPENAI_MODEL,
                messages=[{"role": "system", "content": system_prompt}, *messages],
                max_tokens=max_tokens,
            )
            try:
                return str(resp.choices[0].message.content or "")
            except (LookupError, AttributeError, TypeError) as exc:
                raise MalformedResponse(f"Unreadable OpenAI response: {exc}") from exc

        raise ValueError(f"Unsupported LLM provider: {self.provider}")

    def generate(self, system_prompt: str, turns: Sequence[PromptTurn]) -> str | None:
        """One model call per inbound message. None on any upstream failure."""
        messages = [{"role": t.role, "content": t.content} for t in turns]
        try:
            raw_text = self._complete(system_prompt, messages, settings.REPLY_MAX_TOKENS)
        except UPSTREAM_ERRORS as exc:
            logger.error("[DELEGATE] %s call failed: %s", self.provider, exc)
            return None

        reply = self._clean_output(raw_text)
        if not reply:
            logger.warning("[DELEGATE] %s returned an empty reply", self.provider)
            return None
        return reply

    def synthesize_persona(self, store: AgentStore) -> PersonaProfile:
        """Build a style profile from stored examples and swap it in.

        Raises PersonaSynthesisError without touching the stored profile when
        there is nothing to analyze or the output cannot be parsed.
        """
        examples = store.list_persona_examples()
        if not examples:
            raise PersonaSynthesisError("No persona examples to synthesize")

        examples_text = "\n".join(f'[{e["category"]}]: "{e["example"]}"' for e in examples)
        request = prompts.PERSONA_SYNTHESIS_REQUEST.format(examples=examples_text)

        try:
            raw_text = self._complete(
                prompts.PERSONA_SYNTHESIS_SYSTEM_PROMPT,
                [{"role": "user", "content": request}],
                settings.SYNTHESIS_MAX_TOKENS,
            )
        except UPSTREAM_ERRORS as exc:
            raise PersonaSynthesisError(f"Synthesis call failed: {exc}") from exc

        profile = parse_persona(raw_text)
        store.replace_persona(profile)
        logger.info(
            "[PERSONA] Replaced profile from %d example(s): tone=%r, %d quirk(s), %d phrase(s)",
            len(examples),
            profile.tone,
            len(profile.quirks),
            len(profile.sample_phrases),
        )
        return store.get_persona() or profile
