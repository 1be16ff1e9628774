"""In-process worker pool that executes webhook send attempts."""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class WebhookWorkerPool:
    """N asyncio workers draining a queue of delivery ids.

    Duplicate ids on the queue are harmless: the dispatcher's claim step
    makes every attempt after the first a no-op.
    """

    def __init__(self, dispatcher, concurrency: int = 4):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.dispatcher = dispatcher
        self.concurrency = concurrency
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._work(i), name=f"webhook-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Webhook worker pool started with {self.concurrency} workers")

    def submit(self, delivery_id: str) -> None:
        self.queue.put_nowait(delivery_id)

    async def join(self) -> None:
        """Wait until every submitted delivery has been attempted."""
        await self.queue.join()

    async def stop(self, timeout: Optional[float] = None) -> None:
        if timeout:
            try:
                await asyncio.wait_for(self.queue.join(), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Stopping webhook workers with {self.queue.qsize()} deliveries still queued")
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Webhook worker pool stopped")

    async def _work(self, index: int) -> None:
        while True:
            delivery_id = await self.queue.get()
            try:
                await self.dispatcher.attempt_send(delivery_id)
            except Exception:
                logger.exception(f"Worker {index} failed on delivery {delivery_id}")
            finally:
                self.queue.task_done()
