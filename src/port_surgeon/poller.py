"""Periodic reconciliation driver."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

import structlog

log = structlog.get_logger()


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"


class PollScheduler:
    """Two-state (idle/polling) loop that fetches, waits ``interval``, repeats.

    ``stop()`` only flips the state; the loop notices on its next check and
    exits without cancelling an in-flight fetch. Each ``start()`` begins a
    new generation, and a loop from an older generation exits at its next
    check, so there is never more than one live chain.
    """

    def __init__(self, fetch: Callable[[], Awaitable[object]], interval: float = 2.0) -> None:
        self._fetch = fetch
        self._interval = 0.0
        self.interval = interval
        self.state = PollState.IDLE
        self._generation = 0
        self._task: asyncio.Task | None = None

    @property
    def interval(self) -> float:
        """Seconds between the end of one fetch and the start of the next."""
        return self._interval

    @interval.setter
    def interval(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError(f"Polling interval must be > 0, got {seconds}")
        # Read at each wait, so a change applies from the next scheduled fetch
        self._interval = seconds

    @property
    def is_polling(self) -> bool:
        return self.state is PollState.POLLING

    def start(self) -> None:
        """Begin polling with an immediate fetch. No-op if already polling."""
        if self.state is PollState.POLLING:
            return
        self.state = PollState.POLLING
        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation))
        log.info("polling_started", interval=self._interval)

    def stop(self) -> None:
        """Stop scheduling further fetches. An in-flight fetch still completes."""
        if self.state is PollState.IDLE:
            return
        self.state = PollState.IDLE
        log.info("polling_stopped")

    def _active(self, generation: int) -> bool:
        return self.state is PollState.POLLING and generation == self._generation

    async def _run(self, generation: int) -> None:
        while self._active(generation):
            try:
                await self._fetch()
            except Exception as e:
                # Failures never stop polling; the next cycle may succeed
                log.exception("poll_fetch_failed", error=str(e))
            if not self._active(generation):
                break
            await asyncio.sleep(self._interval)

    async def aclose(self) -> None:
        """Stop polling and cancel the loop task (shutdown only)."""
        self.stop()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
