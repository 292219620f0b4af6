"""Periodic background task with an explicit start/stop lifecycle.

Learn: Used for the daily job-retention sweep. Same shape as a worker
loop — sleep, run, log and keep going on errors — but owned by the app
lifespan, so shutdown cancels it cleanly and tests can call run_once()
instead of waiting a day.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()


class PeriodicTask:
    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Awaitable[object]],
    ):
        self.name = name
        self.interval = interval
        self.func = func
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")
        logger.info("periodic.started", task=self.name, interval=self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("periodic.stopped", task=self.name)

    async def run_once(self) -> object:
        """Run one iteration inline and return its result."""
        return await self.func()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.func()
            except Exception:
                logger.exception("periodic.error", task=self.name)
