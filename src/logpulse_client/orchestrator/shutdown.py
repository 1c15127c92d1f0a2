"""Bounded shutdown of the log device's background work."""

from __future__ import annotations

import time
from typing import Any, Callable

from loguru import logger

from ..batcher.flush_scheduler import FlushScheduler
from ..queuer.delivery_queue import DeliveryQueue
from ..sender.delivery_worker import DeliveryWorker


class ShutdownCoordinator:
    """Stops the flush loop, flushes once more and waits a bounded time for delivery.

    Shutdown is bounded in time rather than lossless: whatever is still queued
    or in flight after the last attempt is abandoned.
    """

    def __init__(
        self,
        scheduler: FlushScheduler,
        worker: DeliveryWorker,
        queue: DeliveryQueue,
        final_flush: Callable[[], Any],
        attempts: int = 4,
        poll_interval: float = 1.0,
        sleep: Callable[[float], Any] = time.sleep,
        join_timeout: float = 5.0,
    ):
        self.scheduler = scheduler
        self.worker = worker
        self.queue = queue
        self.final_flush = final_flush
        self.attempts = attempts
        self.poll_interval = poll_interval
        self.join_timeout = join_timeout
        self._sleep = sleep

    def is_drained(self) -> bool:
        return self.worker.is_idle() and self.queue.size() == 0

    def close(self) -> bool:
        """Run the shutdown sequence.

        Returns:
            True if all queued and in-flight work finished before the bound
        """
        # No automatic flushes from here on
        self.scheduler.stop(timeout=self.join_timeout)

        self.final_flush()

        drained = True
        if self.worker.is_alive():
            drained = self._wait_for_delivery()

        self.worker.stop(timeout=self.join_timeout)

        if not drained:
            logger.warning(f"Shutdown bound exceeded, abandoning {self.queue.size()} queued and {self.worker.in_flight} in-flight requests")
        return drained

    def _wait_for_delivery(self) -> bool:
        for attempt in range(self.attempts):
            if self.is_drained():
                return True
            logger.debug(f"Waiting for delivery to finish (attempt {attempt + 1}/{self.attempts})")
            self._sleep(self.poll_interval)
        return self.is_drained()
