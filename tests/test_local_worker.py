"""Tests for the in-process worker pool adapter."""

import asyncio

import pytest

from agentic_service.core.errors import AdapterFailure, UnavailableError
from agentic_service.services.local_worker import LocalWorkerAdapter
from agentic_service.services.tasks import echo_task

pytestmark = pytest.mark.asyncio


async def wait_done(adapter, handle, attempts=100):
    for _ in range(attempts):
        result = await adapter.poll_result(handle)
        if result.done or result.needs_input:
            return result
        await asyncio.sleep(0.01)
    raise AssertionError(f"Task {handle} did not finish")


async def test_echo_task_returns_text():
    adapter = LocalWorkerAdapter(echo_task)
    handle = await adapter.submit("job-1", {"text": "hello"})
    assert handle == "job-1"

    result = await wait_done(adapter, handle)
    assert result.done
    assert result.output == "hello"
    assert result.error is None
    await adapter.close()


async def test_echo_task_without_text_returns_input():
    adapter = LocalWorkerAdapter(echo_task)
    handle = await adapter.submit("job-1", {"numbers": [1, 2]})
    assert (await wait_done(adapter, handle)).output == {"numbers": [1, 2]}
    await adapter.close()


async def test_task_exception_reported_as_error():
    async def broken(ctx):
        raise ValueError("bad document")

    adapter = LocalWorkerAdapter(broken)
    handle = await adapter.submit("job-1", {})
    result = await wait_done(adapter, handle)
    assert result.done
    assert result.error == "ValueError: bad document"
    await adapter.close()


async def test_duplicate_submit_rejected():
    adapter = LocalWorkerAdapter(echo_task)
    await adapter.submit("job-1", {"text": "a"})
    with pytest.raises(AdapterFailure):
        await adapter.submit("job-1", {"text": "a"})
    await adapter.close()


async def test_unknown_handle():
    adapter = LocalWorkerAdapter(echo_task)
    result = await adapter.poll_result("missing")
    assert result.done
    assert "Unknown execution handle" in result.error
    with pytest.raises(AdapterFailure):
        await adapter.provide_input("missing", {"option": "x"})


async def test_request_input_round_trip():
    async def needs_option(ctx):
        ctx.report("half way")
        merged = await ctx.request_input([{"key": "option", "value_type": "string"}])
        return merged["option"]

    adapter = LocalWorkerAdapter(needs_option)
    handle = await adapter.submit("job-1", {"text": "hello"})

    waiting = await wait_done(adapter, handle)
    assert waiting.needs_input
    assert not waiting.done
    assert waiting.output == "half way"
    assert [f.key for f in waiting.input_request] == ["option"]

    assert await adapter.provide_input(handle, {"option": "fast"}) is True
    result = await wait_done(adapter, handle)
    assert result.done
    assert result.output == "fast"
    await adapter.close()


async def test_partial_input_keeps_waiting():
    async def needs_two(ctx):
        merged = await ctx.request_input([
            {"key": "a", "value_type": "string"},
            {"key": "b", "value_type": "string"},
        ])
        return merged["a"] + merged["b"]

    adapter = LocalWorkerAdapter(needs_two)
    handle = await adapter.submit("job-1", {})
    await wait_done(adapter, handle)

    assert await adapter.provide_input(handle, {"a": "x"}) is False
    assert (await adapter.poll_result(handle)).needs_input
    assert await adapter.provide_input(handle, {"b": "y"}) is True
    assert (await wait_done(adapter, handle)).output == "xy"
    await adapter.close()


async def test_cancel_stops_task():
    started = asyncio.Event()

    async def forever(ctx):
        started.set()
        await asyncio.Event().wait()

    adapter = LocalWorkerAdapter(forever)
    handle = await adapter.submit("job-1", {})
    await started.wait()

    await adapter.cancel(handle)
    assert "Unknown execution handle" in (await adapter.poll_result(handle)).error
    await adapter.cancel(handle)


async def test_concurrency_is_bounded():
    running = 0
    peak = 0
    release = asyncio.Event()

    async def tracked(ctx):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await release.wait()
        running -= 1
        return ctx.job_id

    adapter = LocalWorkerAdapter(tracked, concurrency=2)
    handles = [await adapter.submit(f"job-{i}", {}) for i in range(5)]
    await asyncio.sleep(0.05)
    assert peak == 2

    release.set()
    results = [await wait_done(adapter, h) for h in handles]
    assert [r.output for r in results] == [f"job-{i}" for i in range(5)]
    await adapter.close()


async def test_health_after_close():
    adapter = LocalWorkerAdapter(echo_task)
    await adapter.health()
    await adapter.close()
    with pytest.raises(UnavailableError):
        await adapter.health()
    with pytest.raises(AdapterFailure):
        await adapter.submit("job-1", {"text": "a"})
