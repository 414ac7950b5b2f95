# backend/src/quarry/llm/client.py
"""LiteLLM-based LLM and embedding client."""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NoReturn

from litellm import acompletion, aembedding
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    RateLimitError,
)

from quarry.config import ConfigError, load_settings
from quarry.constants.llm import DEFAULT_TEMPERATURE, JSON_TEMPERATURE, MAX_TOKENS

logger = logging.getLogger(__name__)

# LiteLLM routes Google AI Studio models under "gemini/"
_LITELLM_PROVIDER_PREFIX = {"google": "gemini"}

_RELEVANT_HEADERS = (
    "x-ratelimit-limit-requests",
    "x-ratelimit-limit-tokens",
    "x-ratelimit-remaining-requests",
    "x-ratelimit-remaining-tokens",
    "x-ratelimit-reset-requests",
    "x-ratelimit-reset-tokens",
    "retry-after",
    "x-request-id",
)


class LLMError(Exception):
    """Base exception for LLM client errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when unable to connect to the LLM provider."""

    pass


class LLMAuthenticationError(LLMError):
    """Raised when authentication with the LLM provider fails."""

    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limited by the LLM provider."""

    pass


class LLMClient:
    """Unified LLM client supporting multiple providers via LiteLLM."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str | None = None,
        endpoint: str | None = None,
        log_path: Path | None = None,
    ):
        """Initialize LLM client.

        Args:
            provider: LLM provider (openai, anthropic, google, ollama).
            model: Model name.
            api_key: Optional API key (uses env var if not provided).
            endpoint: Optional custom endpoint (for Ollama).
            log_path: Optional path to JSONL log file for query logging.
        """
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.log_path = log_path

    @property
    def model_key(self) -> str:
        """Provider-qualified model name, e.g. ``openai/text-embedding-3-small``."""
        return f"{self.provider}/{self.model}"

    def _log_query(
        self,
        operation: str,
        request: dict[str, Any],
        response: Any,
        duration_ms: int,
        error: str | None,
        error_details: dict | None = None,
    ) -> None:
        """Append one request to the JSONL log file.

        Args:
            operation: ``completion`` or ``embedding``.
            request: Request parameters worth keeping.
            response: Response text or summary (None if error).
            duration_ms: Request duration in milliseconds.
            error: Error message (None if success).
            error_details: Optional dict with status_code, headers, etc.
        """
        if not self.log_path:
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operation": operation,
            "provider": self.provider,
            "model": self.model,
            "request": request,
            "response": response,
            "duration_ms": duration_ms,
            "error": error,
        }
        if error_details:
            entry["error_details"] = error_details

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            # Losing a log line must not fail the request
            logger.debug(f"Could not write LLM query log: {e}")

    def _extract_error_details(self, e: Exception) -> dict | None:
        """Extract HTTP details from LiteLLM exceptions.

        Args:
            e: The exception to extract details from.

        Returns:
            Dict with status_code, headers, and provider if available.
        """
        details: dict = {}

        if hasattr(e, "status_code"):
            details["status_code"] = e.status_code

        resp = getattr(e, "response", None)
        if resp is not None:
            if hasattr(resp, "status_code"):
                details["status_code"] = resp.status_code
            headers = getattr(resp, "headers", None)
            if headers is not None:
                relevant = {k: v for k, v in dict(headers).items() if k.lower() in _RELEVANT_HEADERS}
                if relevant:
                    details["response_headers"] = relevant

        if hasattr(e, "llm_provider"):
            details["llm_provider"] = e.llm_provider

        if hasattr(e, "message"):
            details["message"] = str(e.message)

        return details if details else None

    def _get_model_string(self) -> str:
        """Get LiteLLM model string.

        Returns:
            Model string in provider/model format.
        """
        if self.provider == "openai":
            return self.model  # OpenAI is default
        prefix = _LITELLM_PROVIDER_PREFIX.get(self.provider, self.provider)
        return f"{prefix}/{self.model}"

    def _base_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self._get_model_string()}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.endpoint and self.provider == "ollama":
            kwargs["api_base"] = self.endpoint
        return kwargs

    def _raise_translated(self, e: Exception) -> NoReturn:
        """Re-raise a LiteLLM exception as the matching LLMError."""
        if isinstance(e, AuthenticationError):
            raise LLMAuthenticationError(f"Authentication failed: {e}") from e
        if isinstance(e, RateLimitError):
            raise LLMRateLimitError(f"Rate limit exceeded: {e}") from e
        if isinstance(e, APIConnectionError):
            raise LLMConnectionError(f"Connection failed: {e}") from e
        raise LLMError(f"LLM API error: {e}") from e

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate completion from prompt.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            temperature: Sampling temperature.
            max_tokens: Maximum response tokens.

        Returns:
            Generated text response.

        Raises:
            LLMError: Or one of its subclasses when the provider call fails.
        """
        if temperature is None or max_tokens is None:
            try:
                settings = load_settings()
                if temperature is None:
                    temperature = settings.llm.default_temperature
                if max_tokens is None:
                    max_tokens = settings.llm.max_tokens
            except (ValueError, OSError, ConfigError):
                # Settings not available, use defaults from CONFIG_SCHEMA
                if temperature is None:
                    temperature = DEFAULT_TEMPERATURE
                if max_tokens is None:
                    max_tokens = MAX_TOKENS

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs = self._base_kwargs()
        kwargs.update(messages=messages, temperature=temperature, max_tokens=max_tokens)
        request = {
            "system_prompt": system_prompt,
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        start_time = time.perf_counter()
        try:
            response = await acompletion(**kwargs)
        except (AuthenticationError, RateLimitError, APIConnectionError, APIError) as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            self._log_query(
                "completion",
                request,
                response=None,
                duration_ms=duration_ms,
                error=str(e),
                error_details=self._extract_error_details(e),
            )
            self._raise_translated(e)

        result: str = str(response.choices[0].message.content or "")
        duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._log_query("completion", request, response=result, duration_ms=duration_ms, error=None)
        return result

    async def generate_with_json(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate completion expecting JSON response.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            max_tokens: Maximum response tokens.

        Returns:
            Generated JSON string.
        """
        try:
            settings = load_settings()
            json_temperature = settings.llm.json_temperature
        except (ValueError, OSError, ConfigError):
            # Settings not available, use defaults from CONFIG_SCHEMA
            json_temperature = JSON_TEMPERATURE
        full_system = (system_prompt or "") + "\n\nRespond with valid JSON only."
        return await self.generate(
            prompt,
            system_prompt=full_system.strip(),
            temperature=json_temperature,
            max_tokens=max_tokens,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts with the configured embedding model.

        Args:
            texts: Inputs to embed, at least one.

        Returns:
            One vector per input, in input order.

        Raises:
            LLMError: Or one of its subclasses when the provider call fails,
                or when it returns the wrong number of vectors.
        """
        if not texts:
            return []

        kwargs = self._base_kwargs()
        kwargs["input"] = texts
        request = {"inputs": len(texts), "chars": sum(len(t) for t in texts)}

        start_time = time.perf_counter()
        try:
            response = await aembedding(**kwargs)
        except (AuthenticationError, RateLimitError, APIConnectionError, APIError) as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            self._log_query(
                "embedding",
                request,
                response=None,
                duration_ms=duration_ms,
                error=str(e),
                error_details=self._extract_error_details(e),
            )
            self._raise_translated(e)

        items = sorted(
            response.data,
            key=lambda item: item["index"] if isinstance(item, dict) else item.index,
        )
        vectors = [
            [float(x) for x in (item["embedding"] if isinstance(item, dict) else item.embedding)]
            for item in items
        ]
        duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._log_query(
            "embedding",
            request,
            response={"vectors": len(vectors)},
            duration_ms=duration_ms,
            error=None,
        )
        if len(vectors) != len(texts):
            raise LLMError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors
