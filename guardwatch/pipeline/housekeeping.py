"""
Periodic housekeeping jobs.

Components:
    PeriodicTask: Runs an async job on a fixed interval until stopped
    ThrottleSweeper: Hourly pruning of stale throttle windows

Example:
    >>> sweeper = ThrottleSweeper(gate.windows, clock, interval_seconds=3600)
    >>> sweeper.start()
    >>> ...
    >>> await sweeper.stop()
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from guardwatch.clock import Clock
from guardwatch.pipeline.throttle import ThrottleWindows

logger = structlog.get_logger(__name__)


class PeriodicTask:
    """
    Runs a job every `interval_seconds`.

    The first run happens one interval after start(). A failing run is
    logged and the loop continues.

    Attributes:
        name: Job name used in log events.
        interval_seconds: Seconds between runs.
        job: Coroutine function to run.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Callable[[], Awaitable[object]],
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self.job = job
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> object:
        """Run the job now, isolating failures."""
        try:
            result = await self.job()
            self.runs += 1
            return result
        except Exception as e:
            logger.error("periodic_task_failed", task=self.name, error=str(e))
            return None

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
        except asyncio.CancelledError:
            logger.debug("periodic_task_cancelled", task=self.name)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "periodic_task_started",
            task=self.name,
            interval_seconds=self.interval_seconds,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class ThrottleSweeper(PeriodicTask):
    """
    Removes stale throttle windows.

    Keys whose timestamps are all older than an hour are deleted; keys with
    recent admissions keep only the recent timestamps.
    """

    def __init__(
        self,
        windows: ThrottleWindows,
        clock: Clock,
        interval_seconds: float = 3600.0,
    ) -> None:
        super().__init__("throttle_sweep", interval_seconds, self.sweep)
        self.windows = windows
        self.clock = clock

    async def sweep(self) -> int:
        """
        Sweep every window once.

        Returns:
            int: Number of keys removed.
        """
        removed = self.windows.sweep(self.clock.now())
        logger.info(
            "throttle_windows_swept",
            removed_keys=removed,
            remaining_keys=len(self.windows),
        )
        return removed
