"""Response providers: turn a spoken command into a short spoken answer.

Each provider exposes generate(text) -> str and raises on any failure; the
cascade decides what to do about it. SDK clients are created with retries
disabled because the cascade moves straight on to the next provider.
"""

import logging
from typing import Optional, Protocol

import httpx

from hark.config import (
    ANTHROPIC_API_KEY,
    CLAUDE_MODEL,
    GROQ_API_KEY,
    GROQ_CHAT_MODEL,
    HTTP_CHAT_API_KEY,
    HTTP_CHAT_MODEL,
    HTTP_CHAT_URL,
    PROVIDER_TIMEOUT,
    RESPONSE_MAX_TOKENS,
    RESPONSE_PROVIDERS,
    RESPONSE_TEMPERATURE,
    SYSTEM_PROMPT_RESPONSE,
)
from hark.personality import Persona

logger = logging.getLogger("hark.providers")


class ResponseProvider(Protocol):
    name: str

    def generate(self, text: str) -> str:
        """Return the answer text. Raise on failure."""
        ...


def build_system_prompt(persona: Persona = None) -> str:
    persona = persona or Persona()
    return SYSTEM_PROMPT_RESPONSE.format(name=persona.name, honorific=persona.honorific)


class GroqProvider:
    """Groq chat completions (fast hosted Llama)."""

    name = "groq"

    def __init__(self, api_key: str, model: str = GROQ_CHAT_MODEL, system_prompt: str = None):
        from groq import Groq

        self._client = Groq(api_key=api_key, timeout=PROVIDER_TIMEOUT, max_retries=0)
        self._model = model
        self._system_prompt = system_prompt or build_system_prompt()
        logger.info("Response provider: Groq (model: %s)", model)

    def generate(self, text: str) -> str:
        response = self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": self._system_prompt},
                {"role": "user", "content": text},
            ],
            max_tokens=RESPONSE_MAX_TOKENS,
            temperature=RESPONSE_TEMPERATURE,
        )
        if not response.choices:
            raise ValueError("Groq returned no choices")
        return (response.choices[0].message.content or "").strip()

    def close(self) -> None:
        self._client.close()


class ClaudeProvider:
    """Anthropic Messages API."""

    name = "claude"

    def __init__(self, api_key: str, model: str = CLAUDE_MODEL, system_prompt: str = None):
        import anthropic

        self._client = anthropic.Anthropic(api_key=api_key, timeout=PROVIDER_TIMEOUT, max_retries=0)
        self._model = model
        self._system_prompt = system_prompt or build_system_prompt()
        logger.info("Response provider: Claude (model: %s)", model)

    def generate(self, text: str) -> str:
        response = self._client.messages.create(
            model=self._model,
            max_tokens=RESPONSE_MAX_TOKENS,
            temperature=RESPONSE_TEMPERATURE,
            system=self._system_prompt,
            messages=[{"role": "user", "content": text}],
        )
        parts = [block.text for block in (response.content or []) if getattr(block, "text", None)]
        if not parts:
            raise ValueError(f"Claude response has no text content (stop_reason={response.stop_reason})")
        return "".join(parts).strip()

    def close(self) -> None:
        self._client.close()


class HTTPChatProvider:
    """Any OpenAI-compatible /chat/completions endpoint (Ollama, LM Studio, ...)."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        model: str = HTTP_CHAT_MODEL,
        api_key: str = "",
        system_prompt: str = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=PROVIDER_TIMEOUT,
            transport=transport,
        )
        self._model = model
        self._system_prompt = system_prompt or build_system_prompt()
        logger.info("Response provider: HTTP chat at %s (model: %s)", base_url, model)

    def generate(self, text: str) -> str:
        resp = self._client.post(
            "/chat/completions",
            json={
                "model": self._model,
                "messages": [
                    {"role": "system", "content": self._system_prompt},
                    {"role": "user", "content": text},
                ],
                "max_tokens": RESPONSE_MAX_TOKENS,
                "temperature": RESPONSE_TEMPERATURE,
                "stream": False,
            },
        )
        resp.raise_for_status()
        data = resp.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Unexpected chat completion payload: {e}") from e
        return (content or "").strip()

    def close(self) -> None:
        self._client.close()


def create_response_providers(persona: Persona = None, names: list[str] = None) -> list[ResponseProvider]:
    """Factory: build providers in configured order, skipping any without credentials."""
    system_prompt = build_system_prompt(persona)
    providers = []
    for name in names if names is not None else RESPONSE_PROVIDERS:
        try:
            if name == "groq":
                if not GROQ_API_KEY:
                    logger.info("Skipping Groq provider: GROQ_API_KEY not set")
                    continue
                providers.append(GroqProvider(GROQ_API_KEY, system_prompt=system_prompt))
            elif name == "claude":
                if not ANTHROPIC_API_KEY:
                    logger.info("Skipping Claude provider: ANTHROPIC_API_KEY not set")
                    continue
                providers.append(ClaudeProvider(ANTHROPIC_API_KEY, system_prompt=system_prompt))
            elif name == "http":
                if not HTTP_CHAT_URL:
                    logger.info("Skipping HTTP chat provider: HTTP_CHAT_URL not set")
                    continue
                providers.append(
                    HTTPChatProvider(HTTP_CHAT_URL, api_key=HTTP_CHAT_API_KEY, system_prompt=system_prompt)
                )
            else:
                logger.warning("Unknown response provider %r, ignoring", name)
        except Exception as e:
            logger.error("Failed to initialize %s provider: %s", name, e)

    if not providers:
        logger.warning("No response providers configured, every command gets a templated answer")
    return providers
