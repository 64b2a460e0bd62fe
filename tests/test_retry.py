"""Tests for bounded retry with backoff."""

from unittest.mock import AsyncMock

import pytest

from src.errors import ContractViolation, ExternalServiceError
from src.retry import retry_with_backoff


@pytest.mark.asyncio
async def test_returns_first_success() -> None:
    fn = AsyncMock(return_value="ok")
    sleep = AsyncMock()

    assert await retry_with_backoff(fn, sleep=sleep) == "ok"
    fn.assert_awaited_once()
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_retries_then_succeeds_with_linear_backoff() -> None:
    fn = AsyncMock(side_effect=[RuntimeError("boom"), RuntimeError("boom"), "ok"])
    sleep = AsyncMock()

    result = await retry_with_backoff(fn, attempts=3, base_delay=1.0, sleep=sleep)

    assert result == "ok"
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhaustion_raises_external_service_error() -> None:
    cause = RuntimeError("still down")
    fn = AsyncMock(side_effect=cause)

    with pytest.raises(ExternalServiceError) as exc_info:
        await retry_with_backoff(fn, attempts=2, sleep=AsyncMock())

    assert fn.await_count == 2
    assert exc_info.value.attempts == 2
    assert exc_info.value.__cause__ is cause


@pytest.mark.asyncio
async def test_contract_violation_is_not_retried() -> None:
    fn = AsyncMock(side_effect=ContractViolation("bad input"))

    with pytest.raises(ContractViolation):
        await retry_with_backoff(fn, attempts=3, sleep=AsyncMock())
    fn.assert_awaited_once()


@pytest.mark.asyncio
async def test_unlisted_exception_propagates() -> None:
    fn = AsyncMock(side_effect=KeyError("x"))

    with pytest.raises(KeyError):
        await retry_with_backoff(fn, retry_on=(RuntimeError,), sleep=AsyncMock())
    fn.assert_awaited_once()


@pytest.mark.asyncio
async def test_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        await retry_with_backoff(AsyncMock(), attempts=0)
