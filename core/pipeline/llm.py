"""
Model invoker: one chat completion per prompt.

Provider-agnostic through the OpenAI Python SDK with a custom base_url;
the default points at Anthropic's OpenAI-compatible endpoint. No retry
happens here (the SDK's own retries are disabled too); the queue
processor owns retry and backoff.

The SDK client is synchronous. `invoke` runs it in a worker thread so
the sliding-window rate limiter blocks that thread, not the event loop.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import openai
import structlog

from core.exceptions import ModelInvocationError

if TYPE_CHECKING:
    from core.config.settings import Settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ModelResponse:
    """Raw text answer plus token accounting."""

    text: str
    input_tokens: int
    output_tokens: int
    model: str

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


# ── Rate Limiter ──────────────────────────────────────


class LLMRateLimiter:
    """Thread-safe sliding-window rate limiter (RPM)."""

    def __init__(self, rpm: int = 50, window_seconds: float = 60.0) -> None:
        self._rpm = rpm
        self._window_seconds = window_seconds
        self._window: deque[float] = deque()
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Block until a request slot is available within the RPM window."""
        while True:
            with self._lock:
                now = time.monotonic()
                while self._window and self._window[0] <= now - self._window_seconds:
                    self._window.popleft()
                if len(self._window) < self._rpm:
                    self._window.append(now)
                    return
                sleep_for = self._window[0] - (now - self._window_seconds)
            time.sleep(max(sleep_for, 0.01))


# ── Invoker ───────────────────────────────────────────


class ModelInvoker:
    """Sends prompts to the configured generative model."""

    def __init__(
        self,
        settings: Settings,
        client: Any | None = None,
        rate_limiter: LLMRateLimiter | None = None,
    ) -> None:
        self.model = settings.llm_model
        self.provider = settings.llm_provider
        self.max_tokens = settings.llm_max_tokens
        self.temperature = settings.llm_temperature
        self._settings = settings
        self._client = client
        self._rate_limiter = rate_limiter or LLMRateLimiter(rpm=settings.llm_rpm_limit)

    @property
    def client(self) -> Any:
        """Lazily built OpenAI-compatible client, reused across calls."""
        if self._client is None:
            api_key = self._settings.llm_api_key.get_secret_value()
            if not api_key:
                raise ModelInvocationError("No LLM API key configured. Set LLM_API_KEY in .env")
            self._client = openai.OpenAI(
                api_key=api_key,
                base_url=self._settings.llm_base_url,
                timeout=self._settings.llm_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def invoke_sync(self, prompt: str) -> ModelResponse:
        """Blocking call. Raises ModelInvocationError on any failure."""
        client = self.client
        self._rate_limiter.wait()

        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APITimeoutError as exc:
            raise ModelInvocationError("Model request timed out", exc) from exc
        except openai.OpenAIError as exc:
            raise ModelInvocationError("Model request failed", exc) from exc

        choices = getattr(response, "choices", None) or []
        text = choices[0].message.content if choices else None
        if not text:
            raise ModelInvocationError("No text content in model response")

        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0

        logger.debug(
            "llm_call_completed",
            provider=self.provider,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        return ModelResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=self.model,
        )

    async def invoke(self, prompt: str) -> ModelResponse:
        return await asyncio.to_thread(self.invoke_sync, prompt)
