# core/llm_interface.py
"""
Handles all direct interactions with the text generation provider.
Includes the chat completion and streaming calls, response cleaning,
and tokenizer helpers used to bound prompt context.
"""

# Standard library imports
import asyncio
import functools
import inspect
import json
import random
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx
import structlog
import tiktoken
from pydantic import BaseModel

# Local imports
from config import settings
from core.exceptions import ProviderError
from core.usage import TokenUsage

logger = structlog.get_logger(__name__)

ChunkCallback = Callable[[str], Awaitable[None] | None]


class SamplingParams(BaseModel):
    """Sampling parameters forwarded to the provider."""

    model: str | None = None
    temperature: float = 0.7
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None


class TextGenerationProvider(Protocol):
    """The two calls every provider adapter offers."""

    async def async_complete(
        self, system_prompt: str, user_prompt: str, params: SamplingParams
    ) -> str: ...

    async def async_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        params: SamplingParams,
        on_chunk: ChunkCallback,
    ) -> str: ...


# Token parameter handling
def _completion_token_param(api_base: str) -> str:
    """Return the token count parameter expected by the provider."""
    if "api.openai.com" in api_base:
        return "max_completion_tokens"
    return "max_tokens"


# --- Tokenizer Cache and Utility Functions (Module Level) ---
@functools.lru_cache(maxsize=settings.TOKENIZER_CACHE_SIZE)
def _get_tokenizer(model_name: str) -> tiktoken.Encoding | None:
    """
    Gets a tiktoken encoder for the given model name, with caching.
    Tries model-specific encoding, then the default, then returns None.
    """
    try:
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            logger.debug(
                f"No direct tiktoken encoding for '{model_name}'. Using default '{settings.TIKTOKEN_DEFAULT_ENCODING}'."
            )
            return tiktoken.get_encoding(settings.TIKTOKEN_DEFAULT_ENCODING)
    except Exception as e:
        # tiktoken downloads encodings on first use; offline hosts land here.
        logger.warning(
            f"Tokenizer unavailable for '{model_name}': {e}. Using character-based estimate."
        )
        return None


def count_tokens(text: str, model_name: str | None = None) -> int:
    """Counts the number of tokens in a string for a given model."""
    if not text:
        return 0
    encoder = _get_tokenizer(model_name or settings.DEFAULT_MODEL)
    if encoder:
        return len(encoder.encode(text, allowed_special="all"))
    return int(len(text) / settings.FALLBACK_CHARS_PER_TOKEN)


def truncate_text_by_tokens(
    text: str,
    max_tokens: int,
    model_name: str | None = None,
    truncation_marker: str = "\n... (truncated)",
) -> str:
    """
    Truncates text to a maximum number of tokens for a given model.
    Adds a truncation marker if truncation occurs.
    """
    if not text:
        return ""

    encoder = _get_tokenizer(model_name or settings.DEFAULT_MODEL)
    if not encoder:
        max_chars = int(max_tokens * settings.FALLBACK_CHARS_PER_TOKEN)
        if len(text) <= max_chars:
            return text
        keep = max(max_chars - len(truncation_marker), 0)
        return text[:keep] + truncation_marker

    tokens = encoder.encode(text, allowed_special="all")
    if len(tokens) <= max_tokens:
        return text

    marker_len = len(encoder.encode(truncation_marker, allowed_special="all"))
    keep = max_tokens - marker_len
    marker = truncation_marker
    if keep <= 0:
        keep = max_tokens
        marker = ""
    return encoder.decode(tokens[:keep]) + marker


_THINK_TAGS = ("think", "thought", "thinking", "reasoning", "reflection", "no_think")


def clean_model_response(text: str) -> str:
    """Strip reasoning blocks, code fences and surplus blank lines from provider output."""
    if not isinstance(text, str):
        logger.warning(
            f"clean_model_response received non-string input: {type(text)}. Returning empty string."
        )
        return ""

    cleaned = text
    for tag_name in _THINK_TAGS:
        cleaned = re.sub(
            rf"<\s*{tag_name}\s*>.*?<\s*/\s*{tag_name}\s*>",
            "",
            cleaned,
            flags=re.DOTALL | re.IGNORECASE,
        )
        cleaned = re.sub(
            rf"<\s*/?\s*{tag_name}\s*/?\s*>", "", cleaned, flags=re.IGNORECASE
        )

    cleaned = re.sub(
        r"```(?:[a-zA-Z0-9_-]+)?\s*(.*?)\s*```", r"\1", cleaned, flags=re.DOTALL
    )
    cleaned = re.sub(r"\n\s*\n(\s*\n)+", "\n\n", cleaned.strip())
    return cleaned


class LLMService:
    """Client for an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_base: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_base = (api_base or settings.OPENAI_API_BASE).rstrip("/")
        self.api_key = api_key or settings.OPENAI_API_KEY
        # Use a single async client for all requests to reuse connections
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                settings.PROVIDER_READ_TIMEOUT,
                connect=settings.PROVIDER_CONNECT_TIMEOUT,
            ),
            transport=transport,
        )
        self._semaphore = asyncio.Semaphore(settings.MAX_CONCURRENT_LLM_CALLS)
        self.request_count = 0
        self.usage = TokenUsage()
        logger.info(
            f"LLMService initialized with a concurrency limit of {settings.MAX_CONCURRENT_LLM_CALLS}."
        )

    async def _backoff_delay(self, attempt: int) -> None:
        """Sleep for an exponentially increasing delay with jitter."""
        delay = settings.LLM_RETRY_DELAY_SECONDS * (2**attempt)
        jitter = random.uniform(0, delay / 2)
        await asyncio.sleep(delay + jitter)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(
        self, system_prompt: str, user_prompt: str, params: SamplingParams
    ) -> dict[str, Any]:
        if not user_prompt or not user_prompt.strip():
            raise ProviderError("Refusing to call provider with an empty prompt.")
        messages: list[dict[str, str]] = []
        if system_prompt and system_prompt.strip():
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        payload: dict[str, Any] = {
            "model": params.model or settings.DEFAULT_MODEL,
            "messages": messages,
            "temperature": params.temperature,
            "top_p": params.top_p if params.top_p is not None else settings.LLM_TOP_P,
            _completion_token_param(self.api_base): params.max_tokens
            or settings.MAX_GENERATION_TOKENS,
        }
        if params.frequency_penalty is not None:
            payload["frequency_penalty"] = params.frequency_penalty
        if params.presence_penalty is not None:
            payload["presence_penalty"] = params.presence_penalty
        return payload

    def _log_llm_usage(
        self, model_name: str, usage_data: dict[str, int] | None, streamed: bool
    ) -> None:
        """Helper to log provider token usage if available in the response."""
        stream_prefix = "Streamed " if streamed else ""
        if not isinstance(usage_data, dict):
            usage_data = None
        self.usage.add(model_name, usage_data)
        if usage_data:
            logger.info(
                f"{stream_prefix}LLM ('{model_name}') Usage - Prompt: {usage_data.get('prompt_tokens', 'N/A')} tk, "
                f"Comp: {usage_data.get('completion_tokens', 'N/A')} tk, Total: {usage_data.get('total_tokens', 'N/A')} tk"
            )
        else:
            logger.debug(
                f"{stream_prefix}LLM ('{model_name}') response missing 'usage' information."
            )

    async def _post_non_streaming(self, payload: dict[str, Any]) -> str:
        """Send a regular chat completion request."""
        payload["stream"] = False
        try:
            response = await self._client.post(
                f"{self.api_base}/chat/completions",
                json=payload,
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"Provider returned HTTP {exc.response.status_code}: {exc.response.text[:200]}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider request failed: {exc!r}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("Provider returned a malformed JSON body.") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise ProviderError(
                f"Provider response for '{payload['model']}' is missing choices."
            )
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ProviderError(
                f"Provider response for '{payload['model']}' has empty content."
            )
        self._log_llm_usage(payload["model"], data.get("usage"), streamed=False)
        return content

    async def _post_streaming(
        self, payload: dict[str, Any], on_chunk: ChunkCallback
    ) -> str:
        """Send a streaming chat completion request, forwarding each delta."""
        payload["stream"] = True
        accumulated: list[str] = []
        usage: dict[str, int] | None = None
        try:
            async with self._client.stream(
                "POST",
                f"{self.api_base}/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=httpx.Timeout(
                    settings.PROVIDER_STREAM_READ_TIMEOUT,
                    connect=settings.PROVIDER_CONNECT_TIMEOUT,
                ),
            ) as response_stream:
                if response_stream.status_code >= 400:
                    body = await response_stream.aread()
                    raise ProviderError(
                        f"Provider returned HTTP {response_stream.status_code}: {body[:200]!r}",
                        status_code=response_stream.status_code,
                    )
                async for line in response_stream.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data_json_str = line[len("data: ") :].strip()
                    if data_json_str == "[DONE]":
                        break
                    try:
                        chunk_data = json.loads(data_json_str)
                    except json.JSONDecodeError as exc:
                        raise ProviderError(
                            "Provider stream contained a malformed chunk."
                        ) from exc
                    if chunk_data.get("usage"):
                        usage = chunk_data["usage"]
                    if not chunk_data.get("choices"):
                        continue
                    delta = chunk_data["choices"][0].get("delta") or {}
                    content_piece = delta.get("content")
                    if content_piece:
                        accumulated.append(content_piece)
                        result = on_chunk(content_piece)
                        if inspect.isawaitable(result):
                            await result
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider stream failed: {exc!r}") from exc

        full_text = "".join(accumulated)
        if not full_text.strip():
            raise ProviderError(
                f"Provider stream for '{payload['model']}' produced no content."
            )
        self._log_llm_usage(payload["model"], usage, streamed=True)
        return full_text

    async def async_complete(
        self,
        system_prompt: str,
        user_prompt: str,
        params: SamplingParams,
        auto_clean_response: bool = True,
    ) -> str:
        """Return the full completion text or raise ``ProviderError``."""
        payload = self._build_payload(system_prompt, user_prompt, params)
        attempts = max(settings.LLM_RETRY_ATTEMPTS, 1)
        last_exc: ProviderError | None = None
        async with self._semaphore:
            for attempt in range(attempts):
                try:
                    self.request_count += 1
                    text = await self._post_non_streaming(dict(payload))
                    return clean_model_response(text) if auto_clean_response else text
                except ProviderError as exc:
                    last_exc = exc
                    logger.warning(
                        f"LLM ('{payload['model']}' Attempt {attempt + 1}/{attempts}): {exc}"
                    )
                if attempt < attempts - 1:
                    await self._backoff_delay(attempt)
        assert last_exc is not None
        raise last_exc

    async def async_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        params: SamplingParams,
        on_chunk: ChunkCallback,
    ) -> str:
        """Stream the completion through ``on_chunk`` and return the full text.

        Streaming calls are never retried: chunks already delivered to the
        caller cannot be taken back.
        """
        payload = self._build_payload(system_prompt, user_prompt, params)
        async with self._semaphore:
            self.request_count += 1
            return await self._post_streaming(payload, on_chunk)


llm_service = LLMService()
