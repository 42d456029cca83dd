"""Reasoning-service clients used by the decision engine."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import openai
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.settings import ReasoningConfig, get_app_config
from ..errors import ReasoningServiceError
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS

# Connection failures (timeouts included), throttling and 5xx responses are worth another attempt.
RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class ReasoningService(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = True,
    ) -> str:
        ...


class OpenAIReasoningService:
    """Chat-completions client with a per-request timeout and bounded retry."""

    def __init__(
        self,
        config: Optional[ReasoningConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._config = config or get_app_config().reasoning
        self._client = client or AsyncOpenAI(
            api_key=self._config.api_key,
            base_url=str(self._config.base_url) if self._config.base_url else None,
            timeout=self._config.timeout_seconds,
            max_retries=0,
        )
        self._logger = get_logger(__name__)

    def _before_sleep(self, state: RetryCallState) -> None:
        METRICS.increment("reasoning.retries")
        error = state.outcome.exception() if state.outcome else None
        self._logger.warning(
            "Reasoning call failed, retrying",
            extra={"attempt": state.attempt_number, "error": str(error)},
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = True,
    ) -> str:
        request: Dict[str, Any] = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(multiplier=0.5, max=self._config.backoff_max_seconds),
            before_sleep=self._before_sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._client.chat.completions.create(**request)
        except openai.OpenAIError as exc:
            raise ReasoningServiceError(f"{self._config.model} completion failed: {exc}") from exc

        if not response.choices:
            return "{}"
        return response.choices[0].message.content or "{}"

    async def aclose(self) -> None:
        await self._client.close()


__all__ = ["OpenAIReasoningService", "RETRYABLE_ERRORS", "ReasoningService"]
