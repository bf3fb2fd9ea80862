# tests/unit/application/test_singleflight.py
from __future__ import annotations

import asyncio

import pytest

from herdguard.application.services.singleflight import SingleFlight


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_execution() -> None:
    """Five concurrent callers for one key run the work once and all get 42."""
    sf = SingleFlight()
    calls = 0
    gate = asyncio.Event()

    async def work() -> int:
        nonlocal calls
        calls += 1
        await gate.wait()
        return 42

    callers = [asyncio.create_task(sf.do("k", work)) for _ in range(5)]
    await asyncio.sleep(0)
    assert "k" in sf
    gate.set()

    assert await asyncio.gather(*callers) == [42] * 5
    assert calls == 1
    assert len(sf) == 0


@pytest.mark.asyncio
async def test_entry_removed_after_settle_so_next_call_runs_again() -> None:
    sf = SingleFlight()
    calls = 0

    async def work() -> int:
        nonlocal calls
        calls += 1
        return calls

    assert await sf.do("k", work) == 1
    assert "k" not in sf
    assert await sf.do("k", work) == 2


@pytest.mark.asyncio
async def test_distinct_keys_do_not_coalesce() -> None:
    sf = SingleFlight()
    calls: list[str] = []

    async def work_for(key: str) -> str:
        calls.append(key)
        await asyncio.sleep(0.01)
        return key

    out = await asyncio.gather(sf.do("a", lambda: work_for("a")), sf.do("b", lambda: work_for("b")))
    assert out == ["a", "b"]
    assert sorted(calls) == ["a", "b"]


@pytest.mark.asyncio
async def test_failure_is_shared_by_all_callers() -> None:
    sf = SingleFlight()
    calls = 0

    async def work() -> int:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")

    results = await asyncio.gather(*(sf.do("k", work) for _ in range(3)), return_exceptions=True)
    assert calls == 1
    assert all(isinstance(r, RuntimeError) and str(r) == "boom" for r in results)
    assert len(sf) == 0


@pytest.mark.asyncio
async def test_cancelling_one_caller_does_not_cancel_shared_work() -> None:
    sf = SingleFlight()
    gate = asyncio.Event()

    async def work() -> str:
        await gate.wait()
        return "done"

    first = asyncio.create_task(sf.do("k", work))
    second = asyncio.create_task(sf.do("k", work))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    gate.set()
    assert await second == "done"
