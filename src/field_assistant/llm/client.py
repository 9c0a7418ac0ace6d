"""
Provider-agnostic streaming model client.

Every call streams and uses the fixed sampling parameters from
config.DETERMINISTIC_PARAMETERS (temperature 0, top_p 0.1, max_tokens 4096):
identical evidence must produce identical guidance.

Supports: OpenAI-compatible chat completions (default; point OPENAI_BASE_URL
at a gateway to reach other model families) and Anthropic (Claude).

The stream_chat() method is the interface the orchestrator consumes:
    async for delta in client.stream_chat(messages, DETERMINISTIC_PARAMETERS):
        ...

Failures are raised as UpstreamModelFailure and never retried here; the
chat client may re-send.
"""

import logging
import math
import os
import time
from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

from ..config import DEFAULT_MODEL, ModelParameters
from ..errors import UpstreamModelFailure
from ..security.prompt_guard import sanitize_for_prompt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120
DEFAULT_MAX_PROMPT_LENGTH = 200_000
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate for audit records (4 characters per token)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN) if text else 0


@runtime_checkable
class ModelClient(Protocol):
    """Streams content deltas for a chat completion."""

    model: str

    def stream_chat(
        self, messages: list[dict], params: ModelParameters
    ) -> AsyncIterator[str]: ...


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """
    Streaming chat client over the OpenAI or Anthropic SDK.

    Usage:
        client = LLMClient(provider="openai", base_url="https://gateway.example/v1")
        async for delta in client.stream_chat(messages, DETERMINISTIC_PARAMETERS):
            print(delta, end="")
    """

    def __init__(
        self,
        provider: str = "openai",
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH,
    ):
        self._provider = provider.lower()
        self.model = model or self._default_model()
        self._api_key = api_key or self._load_api_key()
        self._base_url = base_url
        self._timeout = timeout
        self._max_prompt_length = max_prompt_length
        self._client: Any = None

        self._init_client()
        logger.info(
            f"[LLM] Initialized {self._provider} client "
            f"(model={self.model}, timeout={self._timeout}s)"
        )

    def _default_model(self) -> str:
        defaults = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": DEFAULT_MODEL,
        }
        return defaults.get(self._provider, DEFAULT_MODEL)

    def _load_api_key(self) -> str:
        key_map = {
            "anthropic": "ANTHROPIC_API_KEY",
            "openai": "OPENAI_API_KEY",
        }
        env_var = key_map.get(self._provider, "OPENAI_API_KEY")
        key = os.environ.get(env_var, "")
        if not key:
            logger.warning(f"[LLM] {env_var} not set -- calls will fail")
        return key

    def _init_client(self) -> None:
        """Initialize the provider-specific SDK client."""
        try:
            if self._provider == "anthropic":
                import anthropic

                self._client = anthropic.AsyncAnthropic(
                    api_key=self._api_key, timeout=self._timeout
                )
            elif self._provider == "openai":
                import openai

                self._client = openai.AsyncOpenAI(
                    api_key=self._api_key, base_url=self._base_url, timeout=self._timeout
                )
            else:
                raise ValueError(f"Unsupported provider: {self._provider}")
        except ImportError:
            logger.error(
                f"[LLM] {self._provider} SDK not installed. "
                f"Install the project dependencies."
            )
            self._client = None

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def available(self) -> bool:
        """False when the provider SDK could not be loaded."""
        return self._client is not None

    async def stream_chat(
        self, messages: list[dict], params: ModelParameters
    ) -> AsyncIterator[str]:
        """
        Stream content deltas for the given messages.

        Args:
            messages: Chat messages; a leading "system" message carries the
                      system prompt. Content is a string or a list of
                      text/image_url parts.
            params: Sampling parameters (always DETERMINISTIC_PARAMETERS in
                    production).

        Raises:
            UpstreamModelFailure: provider error, carrying its HTTP status.
        """
        if self._client is None:
            raise UpstreamModelFailure("AI service unavailable: client not initialized")

        messages = self._sanitize_messages(messages)
        start = time.time()
        emitted = 0

        try:
            if self._provider == "anthropic":
                stream = self._stream_anthropic(messages, params)
            else:
                stream = self._stream_openai(messages, params)
            async for delta in stream:
                emitted += len(delta)
                yield delta
        except UpstreamModelFailure:
            raise
        except Exception as e:
            status = getattr(e, "status_code", None)
            logger.error(
                f"[LLM] {self._provider} stream failed "
                f"(status={status}): {type(e).__name__}"
            )
            raise UpstreamModelFailure(_failure_message(status), provider_status=status) from e

        logger.debug(
            f"[LLM] {self._provider}/{self.model}: {emitted} chars streamed "
            f"({(time.time() - start) * 1000:.0f}ms)"
        )

    def _sanitize_messages(self, messages: list[dict]) -> list[dict]:
        """Enforce the prompt size limit on every text field."""
        cleaned = []
        for message in messages:
            content = message["content"]
            if isinstance(content, str):
                content = sanitize_for_prompt(content, max_length=self._max_prompt_length)
            cleaned.append({"role": message["role"], "content": content})
        return cleaned

    async def _stream_openai(
        self, messages: list[dict], params: ModelParameters
    ) -> AsyncIterator[str]:
        """OpenAI-compatible chat completions stream."""
        stream = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            stream=params.stream,
            temperature=params.temperature,
            top_p=params.top_p,
            max_tokens=params.max_tokens,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta

    async def _stream_anthropic(
        self, messages: list[dict], params: ModelParameters
    ) -> AsyncIterator[str]:
        """Anthropic messages stream. System messages move to the system field."""
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        conversation = [
            {"role": m["role"], "content": _anthropic_content(m["content"])}
            for m in messages
            if m["role"] != "system"
        ]
        async with self._client.messages.stream(
            model=self.model,
            max_tokens=params.max_tokens,
            temperature=params.temperature,
            top_p=params.top_p,
            system=system,
            messages=conversation,
        ) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text


def _failure_message(status: int | None) -> str:
    if status == 429:
        return "AI service rate limit exceeded. Please try again later."
    if status == 402:
        return "AI service credits exhausted."
    return "AI service error"


def _anthropic_content(content: str | list[dict]) -> str | list[dict]:
    """Convert OpenAI-style content parts to Anthropic content blocks."""
    if isinstance(content, str):
        return content
    blocks = []
    for part in content:
        if part.get("type") == "text":
            blocks.append({"type": "text", "text": part["text"]})
        elif part.get("type") == "image_url":
            url = part["image_url"]["url"]
            if url.startswith("data:"):
                header, _, data = url.partition(",")
                media_type = header[len("data:"):].split(";")[0]
                blocks.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                })
            else:
                blocks.append({"type": "image", "source": {"type": "url", "url": url}})
    return blocks


# =============================================================================
# FACTORY
# =============================================================================


def create_client(
    provider: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    **kwargs,
) -> LLMClient:
    """
    Create a model client, reading the provider from the environment if not given.

    Detection order:
      1. Explicit provider argument
      2. LLM_PROVIDER
      3. ANTHROPIC_API_KEY set (and OPENAI_API_KEY not set) -> anthropic
      4. Default: openai (OPENAI_BASE_URL selects the gateway)
    """
    if provider is None:
        provider = os.environ.get("LLM_PROVIDER", "").strip().lower() or None
    if provider is None:
        if os.environ.get("ANTHROPIC_API_KEY") and not os.environ.get("OPENAI_API_KEY"):
            provider = "anthropic"
        else:
            provider = "openai"

    if provider == "openai" and "base_url" not in kwargs:
        kwargs["base_url"] = os.environ.get("OPENAI_BASE_URL") or None

    return LLMClient(provider=provider, model=model, api_key=api_key, **kwargs)
