# core/llm_interface.py
"""
Handles all direct interactions with the text generation service.
Includes the generation service protocol consumed by the engine, the
OpenAI-compatible HTTP client, retry/timeout handling and response cleaning.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

# Standard library imports
import asyncio
import functools
import math
import random
import re
from dataclasses import dataclass

# Type hints
from typing import Any, Protocol

import httpx

# Third-party imports
import structlog
import tiktoken

# Local imports
from config import settings
from core.exceptions import GenerationError
from core.usage import TokenUsage

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call limits and labels for a generation request.

    ``retries`` counts extra attempts after the first one.
    """

    retries: int = 1
    timeout: float = 60.0
    purpose: str = "general"
    temperature: float | None = None
    model: str | None = None
    max_tokens: int | None = None


class GenerationService(Protocol):
    """Narrow interface to the external text generation service."""

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        """Return generated text or raise ``GenerationError``."""
        ...


# Token parameter handling
def _completion_token_param(api_base: str) -> str:
    """Return the token count parameter expected by the provider."""
    if "api.openai.com" in api_base or "api.anthropic.com" in api_base:
        return "max_completion_tokens"
    return "max_tokens"


@functools.lru_cache(maxsize=settings.TOKENIZER_CACHE_SIZE)
def _get_tokenizer(model_name: str) -> tiktoken.Encoding | None:
    """
    Gets a tiktoken encoder for the given model name, with caching.
    Tries model-specific encoding, then a default, then returns None.
    """
    try:
        try:
            encoder = tiktoken.encoding_for_model(model_name)
        except KeyError:
            logger.debug(
                f"No direct tiktoken encoding for '{model_name}'. Using default '{settings.TIKTOKEN_DEFAULT_ENCODING}'."
            )
            encoder = tiktoken.get_encoding(settings.TIKTOKEN_DEFAULT_ENCODING)
        return encoder
    except Exception as e:
        logger.error(
            f"Could not load a tokenizer for '{model_name}': {e}. Token counts will be estimated."
        )
        return None


def estimate_tokens(text: str) -> int:
    """Rough token estimate: CJK characters count double relative to other text."""
    if not text:
        return 0
    cjk_chars = len(re.findall(r"[一-鿿]", text))
    other_chars = len(text) - cjk_chars
    return math.ceil(cjk_chars / 2 + other_chars / settings.FALLBACK_CHARS_PER_TOKEN)


def count_tokens(text: str, model_name: str) -> int:
    """
    Counts the number of tokens in a string for a given model.
    Uses tiktoken with caching and falls back to ``estimate_tokens``.
    """
    if not text:
        return 0

    encoder = _get_tokenizer(model_name)
    if encoder:
        return len(encoder.encode(text, allowed_special="all"))
    return estimate_tokens(text)


def clean_model_response(text: str) -> str:
    """Cleans common artifacts from model responses, including <think> blocks."""
    if not isinstance(text, str):
        logger.warning(
            f"clean_model_response received non-string input: {type(text)}. Returning empty string."
        )
        return ""

    cleaned_text = text
    for tag_name in ("think", "thought", "thinking", "reasoning", "analysis"):
        cleaned_text = re.sub(
            rf"<\s*{tag_name}\s*>.*?<\s*/\s*{tag_name}\s*>",
            "",
            cleaned_text,
            flags=re.DOTALL | re.IGNORECASE,
        )
        cleaned_text = re.sub(
            rf"<\s*/?\s*{tag_name}\s*/?\s*>", "", cleaned_text, flags=re.IGNORECASE
        )

    common_phrases_patterns = [
        r"^\s*(Okay,\s*)?(Sure,\s*)?(Here's|Here is)\s+(the|your)\s+[\w\s]+?:\s*",
        r"^\s*(?:Output|Result|Response|Answer)\s*:\s*",
        r"\s*Let me know if you (need|have) any(thing else| other questions| further revisions| adjustments)\b.*?\.?[^\w\n]*$",
        r"\s*I hope this (meets your expectations|helps|is what you were looking for)\b.*?\.?[^\w\n]*$",
    ]
    for pattern_str in common_phrases_patterns:
        cleaned_text = re.sub(
            pattern_str, "", cleaned_text, count=1, flags=re.IGNORECASE | re.MULTILINE
        ).strip()

    final_text = re.sub(r"\n{3,}", "\n\n", cleaned_text.strip())
    return final_text


class LLMService:
    """OpenAI-compatible implementation of ``GenerationService``."""

    def __init__(
        self,
        api_base: str = settings.OPENAI_API_BASE,
        api_key: str = settings.OPENAI_API_KEY,
        default_model: str | None = settings.DRAFTING_MODEL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        # Timeouts are enforced per call, so the client itself is unbounded
        self._client = client or httpx.AsyncClient(timeout=None)
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.default_model = default_model or settings.LARGE_MODEL
        self.request_count = 0
        self.usage = TokenUsage()
        logger.info(f"LLMService initialized for endpoint {self.api_base}.")

    async def _backoff_delay(self, attempt: int) -> None:
        """Sleep for an exponentially increasing delay with jitter."""
        delay = settings.LLM_RETRY_DELAY_SECONDS * (2**attempt)
        jitter = random.uniform(0, delay / 2)
        await asyncio.sleep(delay + jitter)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _log_llm_usage(self, model_name: str, usage_data: dict[str, int] | None) -> None:
        """Helper to log token usage if available in the response."""
        if usage_data and isinstance(usage_data, dict):
            self.usage.add(usage_data)
            logger.info(
                f"LLM ('{model_name}') Usage - Prompt: {usage_data.get('prompt_tokens', 'N/A')} tk, "
                f"Comp: {usage_data.get('completion_tokens', 'N/A')} tk, Total: {usage_data.get('total_tokens', 'N/A')} tk"
            )
        else:
            logger.debug(
                f"LLM ('{model_name}') response missing 'usage' information or 'usage' was not a dictionary."
            )

    async def _post_non_streaming(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> tuple[str, dict[str, int] | None]:
        """Send a regular chat completion request."""
        response = await self._client.post(
            f"{self.api_base}/chat/completions",
            json=payload,
            headers=headers,
        )
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError(
                f"Response body is not JSON: {exc}",
                kind=GenerationError.INVALID_RESPONSE,
            ) from exc
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise GenerationError(
                f"Invalid response structure - missing choices: {str(data)[:200]}",
                kind=GenerationError.INVALID_RESPONSE,
            )
        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            raise GenerationError(
                f"Invalid response structure - malformed message: {str(first)[:200]}",
                kind=GenerationError.INVALID_RESPONSE,
            )
        content = message.get("content")
        raw_text = content if isinstance(content, str) else ""
        usage = data.get("usage")
        return raw_text, usage if isinstance(usage, dict) else None

    def _to_generation_error(self, exc: Exception, purpose: str) -> GenerationError:
        if isinstance(exc, GenerationError):
            exc.purpose = purpose
            return exc
        if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
            return GenerationError(
                f"Request timed out: {exc!r}", kind=GenerationError.TIMEOUT, purpose=purpose
            )
        if isinstance(exc, httpx.HTTPStatusError):
            return GenerationError(
                f"HTTP status {exc.response.status_code}: {exc.response.text[:200]}",
                kind=GenerationError.HTTP,
                purpose=purpose,
            )
        return GenerationError(
            f"{type(exc).__name__}: {exc}", kind=GenerationError.TRANSPORT, purpose=purpose
        )

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        """Call the model with retries, each attempt bounded by ``options.timeout``."""
        if not prompt or not prompt.strip():
            raise GenerationError(
                "Empty prompt", kind=GenerationError.EMPTY, purpose=options.purpose
            )

        model_name = options.model or self.default_model
        temperature = (
            options.temperature
            if options.temperature is not None
            else settings.TEMPERATURE_DEFAULT
        )
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "model": model_name,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "top_p": settings.LLM_TOP_P,
            "stream": False,
            _completion_token_param(self.api_base): options.max_tokens
            or settings.MAX_GENERATION_TOKENS,
        }
        logger.debug(
            f"Calling LLM '{model_name}' for '{options.purpose}'. "
            f"Prompt tokens (est.): {count_tokens(prompt, model_name)}. Timeout: {options.timeout}s"
        )

        attempts = max(0, options.retries) + 1
        last_error: GenerationError | None = None
        for attempt in range(attempts):
            try:
                self.request_count += 1
                text, usage = await asyncio.wait_for(
                    self._post_non_streaming(payload, headers), timeout=options.timeout
                )
                self._log_llm_usage(model_name, usage)
                cleaned = clean_model_response(text)
                if not cleaned:
                    raise GenerationError(
                        "Model returned empty text",
                        kind=GenerationError.EMPTY,
                        purpose=options.purpose,
                    )
                return cleaned
            except (GenerationError, httpx.HTTPError, asyncio.TimeoutError) as exc:
                last_error = self._to_generation_error(exc, options.purpose)
                logger.warning(
                    f"LLM ('{model_name}' {options.purpose} Attempt {attempt + 1}/{attempts}): {last_error.reason}"
                )
                if (
                    isinstance(exc, httpx.HTTPStatusError)
                    and 400 <= exc.response.status_code < 500
                    and exc.response.status_code != 429
                ):
                    logger.error(
                        f"LLM: Client-side error {exc.response.status_code}. Aborting retries."
                    )
                    break
            if attempt < attempts - 1:
                await self._backoff_delay(attempt)

        assert last_error is not None
        logger.error(
            f"LLM: '{options.purpose}' call failed after {attempts} attempt(s): {last_error.reason}"
        )
        raise last_error
