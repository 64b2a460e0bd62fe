"""Thin async wrapper around LiteLLM for LLM completions."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import litellm
from pydantic import BaseModel

from config.settings import settings
from src.retry import retry_with_backoff

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = 3
_RETRY_BASE_DELAY = 1.0


class CompletionResult(BaseModel):
    """Result from an LLM completion."""

    content: str | None = None
    model: str = ""
    total_tokens: int | None = None


class LLMGateway:
    """Async LLM completion via LiteLLM, retried on transient failure."""

    def __init__(
        self,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.model = model or settings.llm_default_model
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self._sleep = sleep

    def _kwargs(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    async def complete(self, messages: list[dict[str, Any]]) -> CompletionResult:
        """Send messages to the LLM and return the response.

        Args:
            messages: OpenAI-format message list (system/user/assistant).

        Raises:
            ExternalServiceError: If every attempt failed.
        """
        logger.info("Calling LLM model=%s", self.model)
        response = await retry_with_backoff(
            lambda: litellm.acompletion(**self._kwargs(messages)),
            attempts=_MAX_ATTEMPTS,
            base_delay=_RETRY_BASE_DELAY,
            description="LLM completion",
            sleep=self._sleep,
        )
        message = response.choices[0].message
        usage = getattr(response, "usage", None)

        return CompletionResult(
            content=message.content,
            model=response.model or self.model,
            total_tokens=getattr(usage, "total_tokens", None),
        )

    async def stream(
        self,
        messages: list[dict[str, Any]],
    ) -> AsyncIterator[str]:
        """Stream LLM response, yielding content deltas.

        Only opening the stream is retried; a failure mid-stream propagates.
        Closing this generator early closes the underlying response.

        Yields:
            Content delta strings as they arrive.
        """
        logger.info("Streaming LLM model=%s", self.model)
        response = await retry_with_backoff(
            lambda: litellm.acompletion(**self._kwargs(messages), stream=True),
            attempts=_MAX_ATTEMPTS,
            base_delay=_RETRY_BASE_DELAY,
            description="LLM stream",
            sleep=self._sleep,
        )

        try:
            async for chunk in response:
                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content
        finally:
            aclose = getattr(response, "aclose", None)
            if aclose is not None:
                await aclose()
