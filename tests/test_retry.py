"""Retry policy behaviour tests."""

from __future__ import annotations

import pytest

from app.errors import NotFoundError, TransientNetworkError
from app.retry import RetryPolicy


class _Sleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.anyio("asyncio")
async def test_retries_transient_errors_with_linear_backoff() -> None:
    """Transient failures should be retried with attempt * base_delay waits."""

    sleeper = _Sleeper()
    attempts: list[int] = []

    async def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientNetworkError("timeout")
        return "ok"

    result = await RetryPolicy(base_delay=1.0).run(flaky, sleep=sleeper)

    assert result == "ok"
    assert len(attempts) == 3
    assert sleeper.delays == [1.0, 2.0]


@pytest.mark.anyio("asyncio")
async def test_gives_up_after_max_attempts() -> None:
    sleeper = _Sleeper()
    calls = 0

    async def always_failing() -> None:
        nonlocal calls
        calls += 1
        raise TransientNetworkError("HTTP 503")

    with pytest.raises(TransientNetworkError):
        await RetryPolicy(max_attempts=3, base_delay=0.5).run(always_failing, sleep=sleeper)

    assert calls == 3
    assert sleeper.delays == [0.5, 1.0]


@pytest.mark.anyio("asyncio")
async def test_non_retryable_errors_propagate_immediately() -> None:
    sleeper = _Sleeper()
    calls = 0

    async def missing() -> None:
        nonlocal calls
        calls += 1
        raise NotFoundError("gone")

    with pytest.raises(NotFoundError):
        await RetryPolicy().run(missing, sleep=sleeper)

    assert calls == 1
    assert sleeper.delays == []
