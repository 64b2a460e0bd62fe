"""Tests for the LLM gateway wrapper."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.errors import ExternalServiceError
from src.llm.gateway import CompletionResult, LLMGateway


def _mock_response(content: str | None = "Hello") -> MagicMock:
    """Build a mock LiteLLM response object."""
    message = MagicMock()
    message.content = content
    choice = MagicMock()
    choice.message = message
    response = MagicMock()
    response.choices = [choice]
    response.model = "gemini/gemini-2.5-flash"
    response.usage.total_tokens = 42
    return response


class _FakeStream:
    """Async-iterable stand-in for a LiteLLM streaming response."""

    def __init__(self, deltas: list[str | None]) -> None:
        self._deltas = deltas
        self.closed = False

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> SimpleNamespace:
        if not self._deltas:
            raise StopAsyncIteration
        content = self._deltas.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
@patch("litellm.acompletion", new_callable=AsyncMock)
async def test_complete_returns_text(mock_acompletion: AsyncMock) -> None:
    """Mocked litellm.acompletion returns CompletionResult with content."""
    mock_acompletion.return_value = _mock_response(content="The answer is 42.")

    gw = LLMGateway(model="test-model", temperature=0.1, max_tokens=50)
    result = await gw.complete([{"role": "user", "content": "question"}])

    assert isinstance(result, CompletionResult)
    assert result.content == "The answer is 42."
    assert result.model == "gemini/gemini-2.5-flash"
    assert result.total_tokens == 42
    call_kwargs = mock_acompletion.call_args.kwargs
    assert call_kwargs["model"] == "test-model"
    assert call_kwargs["temperature"] == 0.1
    assert call_kwargs["max_tokens"] == 50


@pytest.mark.asyncio
@patch("litellm.acompletion", new_callable=AsyncMock)
async def test_complete_retries_transient_errors(mock_acompletion: AsyncMock) -> None:
    mock_acompletion.side_effect = [RuntimeError("rate limited"), _mock_response("ok")]
    sleep = AsyncMock()

    result = await LLMGateway(model="test-model", sleep=sleep).complete([])

    assert result.content == "ok"
    assert mock_acompletion.await_count == 2
    sleep.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
@patch("litellm.acompletion", new_callable=AsyncMock)
async def test_complete_gives_up_after_three_attempts(mock_acompletion: AsyncMock) -> None:
    mock_acompletion.side_effect = RuntimeError("down")

    with pytest.raises(ExternalServiceError):
        await LLMGateway(model="test-model", sleep=AsyncMock()).complete([])
    assert mock_acompletion.await_count == 3


@pytest.mark.asyncio
@patch("litellm.acompletion", new_callable=AsyncMock)
async def test_stream_yields_non_empty_deltas(mock_acompletion: AsyncMock) -> None:
    stream = _FakeStream(["The ", None, "answer", ""])
    mock_acompletion.return_value = stream

    gw = LLMGateway(model="test-model")
    deltas = [d async for d in gw.stream([{"role": "user", "content": "q"}])]

    assert deltas == ["The ", "answer"]
    assert mock_acompletion.call_args.kwargs["stream"] is True
    assert stream.closed


@pytest.mark.asyncio
@patch("litellm.acompletion", new_callable=AsyncMock)
async def test_stream_closed_early_closes_response(mock_acompletion: AsyncMock) -> None:
    stream = _FakeStream(["one ", "two ", "three"])
    mock_acompletion.return_value = stream

    gen = LLMGateway(model="test-model").stream([])
    assert await gen.__anext__() == "one "
    await gen.aclose()

    assert stream.closed
