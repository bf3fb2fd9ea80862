# tests/unit/infrastructure/concurrency/test_cancellation.py
from __future__ import annotations

import asyncio
import time

import pytest

from herdguard.domain.exceptions.resolution import OperationCancelled
from herdguard.infrastructure.concurrency.cancellation import (
    CancelToken,
    checkpoint,
    guarded,
    sleep,
)


def test_cancel_is_idempotent_and_keeps_first_reason() -> None:
    token = CancelToken()
    assert not token.cancelled
    token.raise_if_cancelled()

    token.cancel("client closed")
    token.cancel("second")

    assert token.cancelled
    assert token.reason == "client closed"
    with pytest.raises(OperationCancelled) as ei:
        token.raise_if_cancelled()
    assert ei.value.status == 499
    assert ei.value.details == {"reason": "client closed"}


def test_checkpoint_without_token_is_noop() -> None:
    checkpoint(None)
    token = CancelToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        checkpoint(token)


@pytest.mark.asyncio
async def test_sleep_wakes_early_on_cancel() -> None:
    token = CancelToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel)

    started = time.monotonic()
    with pytest.raises(OperationCancelled):
        await sleep(token, 5)
    assert time.monotonic() - started < 1.0


@pytest.mark.asyncio
async def test_sleep_completes_when_not_cancelled() -> None:
    token = CancelToken()
    await token.sleep(0.01)
    await sleep(None, 0)
    assert not token.cancelled


@pytest.mark.asyncio
async def test_run_returns_result_and_propagates_errors() -> None:
    token = CancelToken()

    async def ok() -> int:
        return 7

    async def boom() -> int:
        raise KeyError("x")

    assert await token.run(ok()) == 7
    assert await guarded(None, ok()) == 7
    with pytest.raises(KeyError):
        await guarded(token, boom())


@pytest.mark.asyncio
async def test_run_cancels_the_wrapped_work() -> None:
    token = CancelToken()
    work_cancelled = asyncio.Event()

    async def slow() -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            work_cancelled.set()
            raise

    asyncio.get_running_loop().call_later(0.02, token.cancel)
    with pytest.raises(OperationCancelled):
        await token.run(slow())
    assert work_cancelled.is_set()


@pytest.mark.asyncio
async def test_run_with_cancelled_token_never_starts_work() -> None:
    token = CancelToken()
    token.cancel()
    started = False

    async def work() -> None:
        nonlocal started
        started = True

    with pytest.raises(OperationCancelled):
        await token.run(work())
    assert started is False


@pytest.mark.asyncio
async def test_shielded_work_survives_cancel() -> None:
    token = CancelToken()
    shared = asyncio.ensure_future(asyncio.sleep(0.05, result="shared"))

    asyncio.get_running_loop().call_later(0.01, token.cancel)
    with pytest.raises(OperationCancelled):
        await token.run(asyncio.shield(shared))

    assert await shared == "shared"
