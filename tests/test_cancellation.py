"""Tests for cooperative cancellation of harness waits."""

import asyncio

import pytest

from botprobe.cancellation import CancellationToken, RunCancelled


class TestSleep:
    """Tests for cancellable sleeps."""

    async def test_sleep_completes(self):
        await CancellationToken().sleep(0.01)

    async def test_cancel_interrupts_sleep(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel, "received SIGINT")
        with pytest.raises(RunCancelled, match="SIGINT"):
            await token.sleep(10)


class TestGuard:
    """Tests for guarded awaitables."""

    async def test_returns_result(self):
        async def answer():
            return 42

        assert await CancellationToken().guard(answer()) == 42

    async def test_cancel_abandons_work(self):
        token = CancellationToken()
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        asyncio.get_running_loop().call_later(0.02, token.cancel, "received SIGTERM")
        with pytest.raises(RunCancelled):
            await token.guard(work())
        assert cancelled.is_set()

    async def test_timeout_abandons_work(self):
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(TimeoutError):
            await CancellationToken().guard(work(), timeout=0.05)
        assert loop.time() - started < 1
        assert cancelled.is_set()

    async def test_caller_cancellation_cancels_work(self):
        token = CancellationToken()
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def work():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        outer = asyncio.create_task(token.guard(work()))
        await started.wait()
        outer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await outer
        assert cancelled.is_set()
        assert not token.cancelled

    async def test_already_cancelled_token(self):
        token = CancellationToken()
        token.cancel("done")

        async def work():
            return 1

        coro = work()
        with pytest.raises(RunCancelled):
            await token.guard(coro)
        coro.close()
