"""Flush scheduling for the HTTP log device.

Two triggers feed the same drain -> build -> dispatch pipeline:

* size: the writing thread flushes as soon as the buffer reports full
* interval: a background thread flushes once ``flush_interval`` has passed
  since the last flush from either trigger
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from loguru import logger

from ..queuer.message_buffer import MessageBuffer
from .request_builder import DeliveryRequest, RequestBuilder

DispatchFn = Callable[[DeliveryRequest], bool]


class FlushScheduler:
    """Drains the message buffer into delivery requests on size and interval."""

    def __init__(
        self,
        buffer: MessageBuffer,
        builder: RequestBuilder,
        dispatch: DispatchFn,
        flush_interval: float = 1.0,
        poll_interval: float = 0.1,
    ):
        """Initialize the flush scheduler.

        Args:
            buffer: Buffer to drain
            builder: Builder turning batches into requests
            dispatch: Called with each built request, returns False if it was dropped
            flush_interval: Seconds between interval-triggered flushes
            poll_interval: How often the background loop checks the clock
        """
        self.buffer = buffer
        self.builder = builder
        self.dispatch = dispatch
        self.flush_interval = flush_interval
        self.poll_interval = poll_interval

        self._lock = threading.Lock()
        self._last_flush: Optional[float] = None
        self._stop_event = threading.Event()
        self._flush_thread: Optional[threading.Thread] = None

        # Statistics
        self._size_flushes = 0
        self._interval_flushes = 0
        self._requests_built = 0
        self._requests_rejected = 0

    def start(self) -> None:
        """Start the interval flush thread if it is not already running."""
        if self.is_alive():
            return

        self._stop_event = threading.Event()
        self._flush_thread = threading.Thread(target=self._flush_loop, name="logpulse-flush", daemon=True)
        self._flush_thread.start()
        logger.debug("Started interval flush thread")

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel the interval flush thread and wait for it to exit."""
        self._stop_event.set()
        if self._flush_thread and self._flush_thread is not threading.current_thread():
            self._flush_thread.join(timeout=timeout)
        self._flush_thread = None

    def is_alive(self) -> bool:
        """Check if the interval flush thread is running."""
        return self._flush_thread is not None and self._flush_thread.is_alive()

    def mark_flushed(self) -> None:
        """Record that a flush just happened."""
        self._last_flush = time.monotonic()

    def is_flush_due(self) -> bool:
        """Check if the flush interval has elapsed since the last flush."""
        if self._last_flush is None:
            return True
        return time.monotonic() - self._last_flush >= self.flush_interval

    def flush(self, dispatch: Optional[DispatchFn] = None) -> Optional[DeliveryRequest]:
        """Drain the buffer, build a request and dispatch it.

        Args:
            dispatch: Used instead of the scheduler's dispatch for this flush

        Returns:
            The dispatched request, or None if the buffer was empty
        """
        self.mark_flushed()
        request = self.builder.build(self.buffer.drain())
        if request is None:
            return None

        with self._lock:
            self._requests_built += 1
        if not (dispatch or self.dispatch)(request):
            with self._lock:
                self._requests_rejected += 1
        return request

    def flush_if_full(self) -> bool:
        """Flush on the calling thread if the buffer reached its batch size.

        Returns:
            True if a flush was performed
        """
        if not self.buffer.is_full():
            return False

        logger.debug("Flushing buffer via write")
        with self._lock:
            self._size_flushes += 1
        self.flush()
        return True

    def get_stats(self) -> dict:
        """Get scheduler statistics."""
        with self._lock:
            return {
                "running": self.is_alive(),
                "flush_interval": self.flush_interval,
                "size_flushes": self._size_flushes,
                "interval_flushes": self._interval_flushes,
                "requests_built": self._requests_built,
                "requests_rejected": self._requests_rejected,
            }

    def _flush_loop(self) -> None:
        """Main interval flush loop."""
        stop_event = self._stop_event

        # Give the first batch a full interval to accumulate
        if stop_event.wait(self.flush_interval):
            return

        while not stop_event.is_set():
            try:
                if self.is_flush_due():
                    logger.debug("Flushing buffer via the interval")
                    with self._lock:
                        self._interval_flushes += 1
                    self.flush()
            except Exception:
                logger.exception("Interval flush failed")

            stop_event.wait(self.poll_interval)

        logger.debug("Interval flush loop finished")
