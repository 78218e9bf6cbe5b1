"""
Unit tests for the trailing-edge Debouncer.
"""
import asyncio
from unittest.mock import AsyncMock

from core.debounce import Debouncer


class TestDebouncer:
    async def test_burst_runs_callback_once_with_last_arguments(self):
        callback = AsyncMock()
        debouncer = Debouncer(0.05, callback)

        for text in ("c", "ca", "cat"):
            debouncer.trigger(text)
            await asyncio.sleep(0.01)

        assert debouncer.pending
        await asyncio.sleep(0.1)

        callback.assert_awaited_once_with("cat")
        assert not debouncer.pending

    async def test_cancel_prevents_callback(self):
        callback = AsyncMock()
        debouncer = Debouncer(0.02, callback)

        debouncer.trigger()
        debouncer.cancel()
        await asyncio.sleep(0.05)

        callback.assert_not_awaited()

    async def test_callback_failure_is_logged_not_raised(self):
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        debouncer = Debouncer(0.01, callback)

        debouncer.trigger()
        await asyncio.sleep(0.03)
        await debouncer.last_task

        callback.assert_awaited_once()
        assert debouncer.last_task.exception() is None

    async def test_changes_every_fifty_ms_fire_once_after_last(self):
        loop = asyncio.get_running_loop()
        fired = []

        async def record(value):
            fired.append((loop.time(), value))

        debouncer = Debouncer(0.3, record)
        for n in range(10):
            debouncer.trigger(n)
            last_change = loop.time()
            await asyncio.sleep(0.05)

        await asyncio.sleep(0.5)
        await debouncer.last_task

        assert [value for _, value in fired] == [9]
        assert 0.25 <= fired[0][0] - last_change < 0.6
