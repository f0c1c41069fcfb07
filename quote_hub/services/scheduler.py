from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs an async job on a fixed interval until stopped.

    The first run happens ``initial_delay_sec`` after ``start()``; after that
    the job runs every ``interval_sec``. A failing run is logged and does not
    stop the schedule. ``stop()`` cancels the loop and waits for it to exit.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        *,
        interval_sec: float,
        initial_delay_sec: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self.name = name
        self.job = job
        self.interval_sec = interval_sec
        self.initial_delay_sec = initial_delay_sec
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.info(
            "[SCHEDULER][start] task=%s interval_sec=%s initial_delay_sec=%s",
            self.name,
            self.interval_sec,
            self.initial_delay_sec,
        )

    async def _run_once(self) -> None:
        self.runs += 1
        try:
            await self.job()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failures += 1
            logger.exception("[SCHEDULER][run_failed] task=%s", self.name)

    async def _loop(self) -> None:
        await self._sleep(self.initial_delay_sec)
        while True:
            await self._run_once()
            await self._sleep(self.interval_sec)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[SCHEDULER][stop] task=%s runs=%d", self.name, self.runs)
