import asyncio

import pytest

from giftwheel.wheel.scheduler import AsyncioTaskScheduler, TaskHandle


@pytest.mark.asyncio
async def test_scheduled_task_fires_once():
    scheduler = AsyncioTaskScheduler()
    calls = []

    handle = scheduler.schedule(10, lambda: calls.append("fired"))
    await asyncio.sleep(0.05)

    assert calls == ["fired"]
    assert handle.fired is True
    handle.run()
    assert calls == ["fired"]


@pytest.mark.asyncio
async def test_cancelled_task_never_fires():
    scheduler = AsyncioTaskScheduler()
    calls = []

    handle = scheduler.schedule(10, lambda: calls.append("fired"))
    scheduler.cancel(handle)
    scheduler.cancel(handle)
    await asyncio.sleep(0.05)

    assert calls == []
    assert handle.cancelled is True
    assert handle.active is False


@pytest.mark.asyncio
async def test_failing_task_is_logged_not_raised():
    scheduler = AsyncioTaskScheduler()

    def boom():
        raise RuntimeError("boom")

    handle = scheduler.schedule(0, boom)
    await asyncio.sleep(0.02)

    assert handle.fired is True


def test_cancel_none_is_a_no_op():
    AsyncioTaskScheduler().cancel(None)


def test_handle_run_after_cancel_is_skipped():
    calls = []
    handle = TaskHandle(lambda: calls.append(1), due_at=0)
    handle.cancel()
    handle.run()
    assert calls == []
