"""Periodic in-process background worker.

Usage::

    worker = BackgroundWorker(
        interval_seconds=60.0,
        tasks=[WorkerTask(name="webhook_retry", fn=run_retry_scan)],
    )
    await worker.start()
    ...
    await worker.stop()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

logger = logging.getLogger(__name__)

# Receives the current UTC time, returns an optional summary to log
TaskFn = Callable[[datetime], Awaitable[Optional[str]]]


@dataclass
class WorkerTask:
    name: str
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """Runs every task once per interval; a failing task does not stop the others."""

    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)
    _task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self, now: Optional[datetime] = None) -> dict[str, Optional[str]]:
        now = now or datetime.now(timezone.utc)
        summaries = {}
        for task in self.tasks:
            try:
                summaries[task.name] = await task.fn(now)
            except Exception:
                logger.exception(f"Background task {task.name} failed")
                summaries[task.name] = None
                continue
            if summaries[task.name]:
                logger.info(f"Background task {task.name} completed: {summaries[task.name]}")
        return summaries

    async def _loop(self) -> None:
        logger.info(f"Background worker started: interval={self.interval_seconds}s tasks={[t.name for t in self.tasks]}")
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
        except asyncio.CancelledError:
            logger.info("Background worker stopped")
            raise
