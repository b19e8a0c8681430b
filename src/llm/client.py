"""
Async HTTP client for OpenAI-compatible LLM APIs.

Provides:
- Async httpx-based HTTP client for chat completions and embeddings
- Rate limiting with token bucket algorithm
- Retry logic with exponential backoff
"""

from __future__ import annotations

import asyncio
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx
import structlog

from sre_dreamer.llm.config import (
    LLMEndpointConfig,
    RateLimitConfig,
    RetryConfig,
)

logger = structlog.get_logger(__name__)


class LLMClientError(Exception):
    """Base exception for LLM client errors."""

    pass


class LLMRateLimitError(LLMClientError):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMClientError):
    """Raised when authentication fails."""

    pass


class LLMAPIError(LLMClientError):
    """Raised when API returns an error."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


@dataclass
class ChatMessage:
    """A single chat message."""

    role: str  # "system", "user", "assistant"
    content: str | list[dict[str, Any]]

    @property
    def text_length(self) -> int:
        if isinstance(self.content, str):
            return len(self.content)
        return sum(len(part.get("text", "")) for part in self.content)


@dataclass
class ChatCompletion:
    """Response from a chat completion request."""

    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


class TokenBucket:
    """Token bucket rate limiter for API calls."""

    def __init__(self, config: RateLimitConfig) -> None:
        self._requests_per_minute = config.requests_per_minute
        self._tokens_per_minute = config.tokens_per_minute

        self._request_tokens = float(config.requests_per_minute)
        self._request_last_update = time.monotonic()

        self._token_tokens = float(config.tokens_per_minute)
        self._token_last_update = time.monotonic()

        self._semaphore = asyncio.Semaphore(config.concurrent_requests)
        self._lock = asyncio.Lock()

    async def acquire(self, estimated_tokens: int = 1000) -> None:
        """Acquire permission to make a request."""
        await self._semaphore.acquire()

        async with self._lock:
            now = time.monotonic()

            elapsed = now - self._request_last_update
            self._request_tokens = min(
                self._requests_per_minute,
                self._request_tokens + elapsed * (self._requests_per_minute / 60),
            )
            self._request_last_update = now

            elapsed = now - self._token_last_update
            self._token_tokens = min(
                self._tokens_per_minute,
                self._token_tokens + elapsed * (self._tokens_per_minute / 60),
            )
            self._token_last_update = now

            if self._request_tokens < 1:
                wait_time = (1 - self._request_tokens) / (self._requests_per_minute / 60)
                await asyncio.sleep(wait_time)
                self._request_tokens = 1

            if self._token_tokens < estimated_tokens:
                wait_time = (estimated_tokens - self._token_tokens) / (
                    self._tokens_per_minute / 60
                )
                await asyncio.sleep(wait_time)
                self._token_tokens = estimated_tokens

            self._request_tokens -= 1
            self._token_tokens -= estimated_tokens

    def release(self) -> None:
        """Release the semaphore after request completes."""
        self._semaphore.release()

    def report_usage(self, actual_tokens: int, estimated_tokens: int) -> None:
        """Deduct any usage beyond the estimate from the budget."""
        if actual_tokens > estimated_tokens:
            self._token_tokens -= actual_tokens - estimated_tokens


class LLMClient:
    """
    Async client for OpenAI-compatible LLM APIs.

    Completions and embeddings are read-only calls, so they are retried on
    rate limits, timeouts, connection errors and 5xx responses. Authentication
    failures and other 4xx responses are raised immediately.
    """

    def __init__(
        self,
        endpoint: LLMEndpointConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._log = logger.bind(
            component="llm_client",
            provider=endpoint.provider,
            model=endpoint.model,
        )

        self._rate_limiter = TokenBucket(endpoint.rate_limit)

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(endpoint.timeout_ms / 1000),
        )

    @property
    def endpoint(self) -> LLMEndpointConfig:
        return self._endpoint

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def _build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = self._endpoint.api_key.get_secret_value()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _estimate_tokens(self, messages: list[ChatMessage], max_tokens: int) -> int:
        # Rough estimation: ~4 chars per token
        total_chars = sum(m.text_length for m in messages)
        return max(100, total_chars // 4 + max_tokens)

    async def _post_with_retry(
        self,
        url: str,
        body: dict[str, Any],
        estimated_tokens: int,
    ) -> dict[str, Any]:
        """POST a JSON body and return the decoded response, retrying transient failures."""
        retry_config = self._endpoint.retry
        headers = self._build_headers()
        last_error: Exception | None = None

        for attempt in range(retry_config.max_retries + 1):
            try:
                await self._rate_limiter.acquire(estimated_tokens)

                try:
                    response = await self._client.post(url, json=body, headers=headers)

                    if response.status_code == 200:
                        data = response.json()
                        actual = data.get("usage", {}).get("total_tokens", estimated_tokens)
                        self._rate_limiter.report_usage(actual, estimated_tokens)
                        return data

                    if response.status_code == 401:
                        raise LLMAuthenticationError("Invalid API key or authentication failed")

                    if response.status_code == 429:
                        retry_after = response.headers.get("retry-after")
                        raise LLMRateLimitError(
                            "Rate limit exceeded",
                            retry_after=float(retry_after) if retry_after else None,
                        )

                    try:
                        error_body = response.json()
                    except ValueError:
                        error_body = {"error": response.text}

                    raise LLMAPIError(
                        f"API error: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                    )

                finally:
                    self._rate_limiter.release()

            except (LLMRateLimitError, httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e

                if attempt >= retry_config.max_retries:
                    raise

                delay = self._calculate_backoff(attempt, retry_config)
                if isinstance(e, LLMRateLimitError) and e.retry_after:
                    delay = max(delay, e.retry_after * 1000)

                self._log.warning(
                    "Request failed, retrying",
                    attempt=attempt + 1,
                    max_retries=retry_config.max_retries,
                    delay_ms=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay / 1000)

            except LLMAuthenticationError:
                raise

            except LLMAPIError as e:
                last_error = e
                if not (e.status_code and 500 <= e.status_code < 600):
                    raise
                if attempt >= retry_config.max_retries:
                    raise

                delay = self._calculate_backoff(attempt, retry_config)
                self._log.warning(
                    "Server error, retrying",
                    attempt=attempt + 1,
                    delay_ms=delay,
                    status_code=e.status_code,
                )
                await asyncio.sleep(delay / 1000)

        raise last_error or LLMClientError("Request failed after retries")

    def _calculate_backoff(self, attempt: int, config: RetryConfig) -> float:
        """Calculate exponential backoff delay with optional jitter."""
        delay = config.initial_delay_ms * (config.exponential_base**attempt)
        delay = min(delay, config.max_delay_ms)

        if config.jitter:
            delay = delay * (0.5 + random.random())

        return delay

    def _parse_completion(self, data: dict[str, Any]) -> ChatCompletion:
        choices = data.get("choices", [])
        if not choices:
            raise LLMAPIError("No choices in response", response_body=data)

        choice = choices[0]
        message = choice.get("message", {})

        return ChatCompletion(
            content=message.get("content") or "",
            model=data.get("model", self._endpoint.model),
            usage=data.get("usage", {}),
            finish_reason=choice.get("finish_reason"),
            raw_response=data,
        )

    async def chat(
        self,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> ChatCompletion:
        """
        Send a chat completion request.

        Args:
            messages: List of chat messages
            temperature: Optional temperature override
            max_tokens: Optional max_tokens override
            **kwargs: Additional API parameters (response_format, etc.)

        Returns:
            ChatCompletion with the response

        Raises:
            LLMClientError: On API errors
            LLMRateLimitError: When rate limited
            LLMAuthenticationError: On auth failures
        """
        effective_max_tokens = max_tokens or self._endpoint.max_tokens
        body: dict[str, Any] = {
            "model": self._endpoint.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": (
                temperature if temperature is not None else self._endpoint.temperature
            ),
            "max_tokens": effective_max_tokens,
        }
        body.update(kwargs)

        self._log.debug(
            "Sending chat request",
            message_count=len(messages),
            temperature=body["temperature"],
            max_tokens=effective_max_tokens,
        )

        data = await self._post_with_retry(
            f"{self._endpoint.base_url}/chat/completions",
            body,
            self._estimate_tokens(messages, effective_max_tokens),
        )
        result = self._parse_completion(data)

        self._log.debug(
            "Chat request completed",
            tokens_used=result.usage.get("total_tokens"),
            finish_reason=result.finish_reason,
        )
        return result

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> str:
        """Simplified interface for single prompt completion."""
        messages = []
        if system_prompt:
            messages.append(ChatMessage(role="system", content=system_prompt))
        messages.append(ChatMessage(role="user", content=prompt))

        result = await self.chat(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        return result.content

    async def embed(self, text: str) -> list[float]:
        """
        Compute an embedding vector for a text.

        Raises:
            LLMAPIError: When the response carries no embedding
        """
        data = await self._post_with_retry(
            f"{self._endpoint.base_url}/embeddings",
            {"model": self._endpoint.embedding_model, "input": text},
            max(1, len(text) // 4),
        )
        items = data.get("data") or []
        if not items or "embedding" not in items[0]:
            raise LLMAPIError("No embedding in response", response_body=data)

        vector = [float(v) for v in items[0]["embedding"]]
        self._log.debug("Embedding computed", dimensions=len(vector))
        return vector


@asynccontextmanager
async def create_llm_client(
    endpoint: LLMEndpointConfig,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncIterator[LLMClient]:
    """
    Context manager for a client whose lifecycle is owned by the caller.

    Usage:
        async with create_llm_client(config.default_endpoint) as client:
            text = await client.complete("Summarize the incident")
    """
    client = LLMClient(endpoint=endpoint, http_client=http_client)
    try:
        yield client
    finally:
        await client.close()
