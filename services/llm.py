"""
LLM Service using OpenRouter.

Async completions over the OpenRouter API for reflection and planning,
plus an offline mock with the same interface.
"""

import asyncio
import logging
import re
from typing import Any, Protocol

import httpx

from services.errors import MalformedResponse, ServiceUnavailable

logger = logging.getLogger(__name__)


class LanguageModel(Protocol):
    """Free-text completion given a prompt."""

    async def complete(self, prompt: str, **options: Any) -> str: ...


class LLMService:
    """
    Chat completions from OpenRouter.

    Requests are throttled to a minimum spacing and at most ten run at once.
    Transient failures (network errors, 429 and 5xx replies) are retried with
    exponential backoff; any other HTTP error fails immediately. Callers own
    all parsing of the returned text.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "anthropic/claude-3-haiku",
        base_url: str = "https://openrouter.ai/api/v1",
        max_retries: int = 3,
        timeout: float = 60.0,
        max_backoff: float = 8.0,
    ):
        """
        Initialize the LLM service.

        Args:
            api_key: OpenRouter API key.
            model: Default model to use.
            base_url: OpenRouter API base URL.
            max_retries: Maximum number of attempts per request.
            timeout: Request timeout in seconds.
            max_backoff: Upper bound in seconds for any single wait between attempts.
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(max_retries, 1)
        self.timeout = timeout
        self.max_backoff = max_backoff

        self._semaphore = asyncio.Semaphore(10)
        self._last_request_time = 0.0
        self._min_request_interval = 0.1

    def _get_client(self) -> httpx.AsyncClient:
        """Get an HTTP client configured for OpenRouter."""
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "X-Title": "Agent Cognition",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )

    async def complete(
        self,
        prompt: str,
        system: str | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        stop: list[str] | None = None,
        **kwargs: Any,
    ) -> str:
        """
        Generate a completion for the given prompt.

        Args:
            prompt: The user prompt.
            system: Optional system message.
            model: Model to use (defaults to instance model).
            temperature: Sampling temperature (0-2).
            max_tokens: Maximum tokens in response.
            stop: Stop sequences.
            **kwargs: Additional parameters to pass to the API.

        Raises:
            ServiceUnavailable: The request kept failing or was rejected.
            MalformedResponse: The API replied without a usable completion.
        """
        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})

        payload: dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            **kwargs,
        }
        if stop:
            payload["stop"] = stop

        async with self._semaphore:
            data = await self._post_with_retries("/chat/completions", payload)
        return self._extract_content(data)

    async def _post_with_retries(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        last_error = "no attempts made"
        for attempt in range(self.max_retries):
            await self._throttle()
            try:
                async with self._get_client() as client:
                    response = await client.post(path, json=payload)
            except httpx.RequestError as e:
                last_error = f"request error: {e}"
                logger.error(f"LLM {last_error} (attempt {attempt + 1}/{self.max_retries})")
                await self._backoff(attempt)
                continue
            finally:
                self._last_request_time = asyncio.get_running_loop().time()

            if response.status_code == 429 or response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    f"LLM {last_error} (attempt {attempt + 1}/{self.max_retries}): "
                    f"{response.text[:200]}"
                )
                await self._backoff(attempt, response.headers.get("Retry-After"))
                continue

            if response.is_error:
                logger.error(f"LLM request rejected: {response.status_code} - {response.text}")
                raise ServiceUnavailable(f"LLM request rejected with HTTP {response.status_code}")

            try:
                return response.json()
            except ValueError as e:
                raise MalformedResponse(f"LLM returned invalid JSON: {e}") from e

        raise ServiceUnavailable(
            f"LLM request failed after {self.max_retries} attempts ({last_error})"
        )

    async def _throttle(self) -> None:
        elapsed = asyncio.get_running_loop().time() - self._last_request_time
        if elapsed < self._min_request_interval:
            await asyncio.sleep(self._min_request_interval - elapsed)

    async def _backoff(self, attempt: int, retry_after: str | None = None) -> None:
        """Wait before the next attempt; nothing to wait for after the last one."""
        if attempt >= self.max_retries - 1:
            return
        try:
            delay = float(retry_after) if retry_after else 2**attempt
        except ValueError:
            delay = 2**attempt
        await asyncio.sleep(min(delay, self.max_backoff))

    @staticmethod
    def _extract_content(data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.error(f"Unexpected response format: {data}")
            raise MalformedResponse("Invalid response format from API") from None
        if not isinstance(content, str):
            raise MalformedResponse("Completion content is not text")
        return content


class MockLLMService:
    """
    Mock LLM service for running without an API key.

    Returns deterministic responses in the shapes the cognition parsers
    expect, so a whole simulation can run offline.
    """

    def __init__(self) -> None:
        logger.warning("Using MockLLMService - set OPENROUTER_API_KEY for real LLM")

    async def complete(self, prompt: str, **options: Any) -> str:
        """Return mock completions based on prompt content."""
        prompt_lower = prompt.lower()

        if "question_1" in prompt_lower:
            return (
                "QUESTION_1: What do my recent experiences say about my priorities?\n"
                "QUESTION_2: Which places and people have mattered most lately?\n"
                "QUESTION_3: What should I do differently tomorrow?"
            )

        if "rate the poignancy" in prompt_lower:
            return "7"

        if "time available:" in prompt_lower:
            match = re.search(r"time available:\s*(\d+)", prompt_lower)
            available = int(match.group(1)) if match else 60
            return _mock_schedule(available)

        if "insight:" in prompt_lower:
            return "I keep returning to the same few places, so routine shapes my days."

        return "doing something interesting"


def _mock_schedule(available: int) -> str:
    """Split the available minutes into up to three steps."""
    labels = ["Look around and take stock", "Work toward the current goal", "Rest and review"]
    count = min(len(labels), max(available, 1))
    base = max(available // count, 1)
    lines = []
    for i in range(count):
        duration = base if i < count - 1 else max(available - base * (count - 1), 1)
        lines.append(f"- {labels[i]} ({duration})")
    return "\n".join(lines)


_llm_service: LLMService | MockLLMService | None = None


def get_llm_service() -> LLMService | MockLLMService:
    """
    Get the process-wide LLM service instance built from settings.

    Returns a MockLLMService if no API key is configured.
    """
    global _llm_service

    if _llm_service is None:
        from config.settings import get_settings

        settings = get_settings()
        if settings.openrouter_api_key:
            _llm_service = LLMService(
                api_key=settings.openrouter_api_key,
                model=settings.openrouter_model,
                base_url=settings.openrouter_base_url,
            )
        else:
            _llm_service = MockLLMService()

    return _llm_service
