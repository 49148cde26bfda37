"""Cooperative cancellation for harness waits."""

import asyncio
import contextlib


class RunCancelled(Exception):
    """The run was cancelled by the operator (SIGINT/SIGTERM)."""


class CancellationToken:
    """An asyncio.Event that every harness wait races against.

    `sleep` returns after the delay, or raises RunCancelled as soon as the
    token is cancelled.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise RunCancelled(self.reason or "cancelled")

    async def guard(self, awaitable, timeout: float | None = None):
        """Await something, abandoning it if the token is cancelled first.

        The guarded work is cancelled whenever guard returns without its
        result, including when the caller itself is cancelled.

        Raises:
            RunCancelled: If the token fires first.
            TimeoutError: If `timeout` seconds pass first.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
            if task in done:
                return task.result()
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if waiter in done:
            raise RunCancelled(self.reason or "cancelled")
        raise TimeoutError(f"no result within {timeout:.3f}s")
