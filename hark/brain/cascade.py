"""
Response cascade: ordered provider fallback ending in a local templated answer.

The first provider that returns non-empty text wins. A provider that raises
or returns nothing is logged and skipped without retry; when every provider
fails the persona's template table answers, so respond() always produces
something to say.
"""

import logging
import random
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from hark.brain.providers import ResponseProvider
from hark.errors import ProviderFailure
from hark.personality import Persona

logger = logging.getLogger("hark.cascade")

TERMINAL_PUNCTUATION = (".", "!", "?")

# Checked in order; first match picks the template
TEMPLATE_RULES = (
    ("greeting", re.compile(r"\b(hello|hi|hey|greetings)\b")),
    ("status", re.compile(r"\b(status|how are you)\b")),
    ("thanks", re.compile(r"\b(thank you|thanks)\b")),
)


@dataclass(frozen=True)
class CommandResult:
    command_text: str
    confidence: float
    response_text: str
    provider: Optional[str] = None  # None when the template table answered


def format_response(text: str, persona: Persona) -> str:
    """Normalise a response to the persona's address style.

    Existing honorifics are removed, then exactly one is put back at the end:
    always when the text has no terminal punctuation, otherwise only for
    personas with formal titles.
    """
    honorific = (persona.honorific or "").strip()
    formatted = " ".join((text or "").split())
    if not honorific:
        return formatted

    led_with_honorific = re.match(rf"\W*{re.escape(honorific)}\b", formatted, re.IGNORECASE) is not None
    formatted = re.sub(rf",?\s*\b{re.escape(honorific)}\b", "", formatted, flags=re.IGNORECASE)
    formatted = re.sub(r"\s+([,.!?])", r"\1", formatted)
    formatted = re.sub(r",\s*,", ",", formatted)
    formatted = " ".join(formatted.split()).strip(" ,")
    if not formatted.strip(" .!?"):
        return persona.fallback_reply
    if led_with_honorific:
        formatted = formatted[0].upper() + formatted[1:]

    if not formatted.endswith(TERMINAL_PUNCTUATION):
        return f"{formatted}, {honorific}."
    if persona.formal_titles:
        return f"{formatted[:-1]}, {honorific}{formatted[-1]}"
    return formatted


class ResponseCascade:
    def __init__(self, providers: Sequence[ResponseProvider], persona: Persona = None, rng: random.Random = None):
        self._providers = list(providers)
        self._persona = persona or Persona()
        self._rng = rng or random.Random()

    @property
    def provider_names(self) -> list[str]:
        return [_provider_name(p) for p in self._providers]

    def respond(self, command_text: str, confidence: float = 1.0) -> CommandResult:
        """Answer a command. Never raises."""
        text = " ".join((command_text or "").split())

        if text:
            for provider in self._providers:
                reply = self._try_provider(provider, text)
                if reply:
                    name = _provider_name(provider)
                    logger.info("Response from %s", name)
                    return CommandResult(text, confidence, format_response(reply, self._persona), name)
            if self._providers:
                logger.warning("All response providers failed, using templated answer")

        reply = self.templated_response(text)
        return CommandResult(text, confidence, format_response(reply, self._persona), None)

    def close(self) -> None:
        """Release provider clients (HTTP connection pools)."""
        for provider in self._providers:
            close = getattr(provider, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.warning("Closing provider %s failed: %s", _provider_name(provider), e)

    def templated_response(self, command_text: str) -> str:
        lower = (command_text or "").lower()
        for kind, pattern in TEMPLATE_RULES:
            if not pattern.search(lower):
                continue
            if kind == "greeting":
                return self._persona.greeting(self._rng)
            if kind == "status":
                return self._persona.status_reply
            return self._persona.thanks_reply
        return self._persona.confirmation(self._rng)

    @staticmethod
    def _try_provider(provider: ResponseProvider, text: str) -> Optional[str]:
        name = _provider_name(provider)
        try:
            reply = provider.generate(text)
        except Exception as e:
            logger.warning("Provider failed: %s", ProviderFailure(name, str(e) or type(e).__name__))
            return None
        if not isinstance(reply, str) or not reply.strip():
            logger.warning("Provider failed: %s", ProviderFailure(name, "empty response"))
            return None
        return reply.strip()


def _provider_name(provider) -> str:
    return getattr(provider, "name", None) or type(provider).__name__
