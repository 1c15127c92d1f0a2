"""Background delivery of built requests to the log collector.

The delivery worker owns a persistent connection, takes requests off the
delivery queue and sends them one at a time. A connection is rotated after
``requests_per_conn`` requests, or abandoned right after a failed send; the
failed request goes back on the queue after a capped linear backoff.
"""

from __future__ import annotations

import os
import threading
from typing import Any, Callable, Optional

from loguru import logger

from ..batcher.request_builder import DeliveryRequest
from ..queuer.delivery_queue import DeliveryQueue
from .connection import Connection

ConnectionFactory = Callable[[], Connection]


def backoff_seconds(consecutive_errors: int, step: float = 2.0, maximum: float = 30.0) -> float:
    """Delay before retrying after ``consecutive_errors`` failures in a row."""
    return min(consecutive_errors * step, maximum)


class DeliveryWorker:
    """Sends requests from the delivery queue over rotating connections."""

    def __init__(
        self,
        queue: DeliveryQueue,
        connection_factory: ConnectionFactory = Connection,
        requests_per_conn: int = 2500,
        backoff_step: float = 2.0,
        backoff_max: float = 30.0,
        poll_interval: float = 0.25,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        """Initialize the delivery worker.

        Args:
            queue: Queue of requests to deliver
            connection_factory: Creates a fresh, unopened connection
            requests_per_conn: Requests sent on one connection before rotating it
            backoff_step: Seconds added to the backoff per consecutive failure
            backoff_max: Upper bound for the backoff
            poll_interval: How long a pop waits before re-checking for cancellation
            sleep: Backoff sleep override, defaults to an interruptible wait
        """
        if requests_per_conn <= 0:
            raise ValueError("requests_per_conn must be > 0")

        self.queue = queue
        self.connection_factory = connection_factory
        self.requests_per_conn = requests_per_conn
        self.backoff_step = backoff_step
        self.backoff_max = backoff_max
        self.poll_interval = poll_interval
        self._sleep = sleep

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._worker_thread: Optional[threading.Thread] = None
        self._owner_pid = os.getpid()
        self._in_flight = 0
        self._consecutive_errors = 0
        self._retry: Optional[DeliveryRequest] = None  # Failed request the queue had no room for

        # Statistics
        self._connections_opened = 0
        self._total_delivered = 0
        self._total_failed_attempts = 0
        self._total_rejected = 0
        self._total_requeued = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def connections_opened(self) -> int:
        with self._lock:
            return self._connections_opened

    @property
    def delivered(self) -> int:
        with self._lock:
            return self._total_delivered

    def start(self) -> None:
        """Start the delivery thread if it is not already running."""
        if self.is_alive():
            return

        if self._owner_pid != os.getpid():
            # Counters copied from the parent process describe the parent's thread
            self._owner_pid = os.getpid()
            with self._lock:
                self._in_flight = 0
            self._retry = None

        self._stop_event = threading.Event()
        self._worker_thread = threading.Thread(target=self.run, name="logpulse-delivery", daemon=True)
        self._worker_thread.start()
        logger.debug("Started delivery thread")

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel the delivery loop and wait for the thread to exit."""
        self._stop_event.set()
        if self._worker_thread and self._worker_thread is not threading.current_thread():
            self._worker_thread.join(timeout=timeout)
            if self._worker_thread.is_alive():
                logger.warning(f"Delivery thread did not finish within {timeout:.1f}s")
        self._worker_thread = None

    def is_alive(self) -> bool:
        """Check if the delivery thread is running."""
        return self._worker_thread is not None and self._worker_thread.is_alive()

    def is_idle(self) -> bool:
        """Check that nothing is being sent or waiting for a retry."""
        with self._lock:
            return self._in_flight == 0 and self._retry is None

    def run(self) -> None:
        """Main delivery loop: one iteration per connection."""
        stop_event = self._stop_event
        logger.debug("Started delivery loop")

        while not stop_event.is_set():
            connection = self.connection_factory()
            with self._lock:
                self._connections_opened += 1
            try:
                connection.open()
                self._serve(connection, stop_event)
            except Exception:
                logger.exception("Delivery connection failed")
                self._wait(backoff_seconds(max(1, self._consecutive_errors), self.backoff_step, self.backoff_max))
            finally:
                connection.close()

        logger.debug("Delivery loop finished")

    def send_now(self, request: DeliveryRequest) -> bool:
        """Deliver a single request on the calling thread.

        Opens a short-lived connection and makes one attempt, bypassing the
        delivery queue.

        Returns:
            True if the collector accepted the request
        """
        with self._lock:
            self._in_flight += 1
        try:
            with self.connection_factory() as connection:
                response = connection.send(request)
        except Exception as e:
            request.attempts += 1
            with self._lock:
                self._total_failed_attempts += 1
            logger.error(f"Failed to deliver {request.batch_id} with {request.message_count} messages: {e}")
            return False
        finally:
            with self._lock:
                self._in_flight -= 1

        return self._record_response(request, response)

    def get_stats(self) -> dict:
        """Get delivery statistics."""
        running = self.is_alive()
        with self._lock:
            return {
                "running": running,
                "in_flight": self._in_flight,
                "pending_retry": self._retry is not None,
                "connections_opened": self._connections_opened,
                "total_delivered": self._total_delivered,
                "total_failed_attempts": self._total_failed_attempts,
                "total_rejected": self._total_rejected,
                "total_requeued": self._total_requeued,
                "consecutive_errors": self._consecutive_errors,
            }

    def _serve(self, connection: Connection, stop_event: threading.Event) -> None:
        """Send up to requests_per_conn requests over one connection."""
        num_requests = 0
        while num_requests < self.requests_per_conn and not stop_event.is_set():
            request = self._next_request()
            if request is None:
                continue

            with self._lock:
                self._in_flight += 1
            try:
                delivered = self._deliver(connection, request)
            finally:
                with self._lock:
                    self._in_flight -= 1

            if not delivered:
                # Drop this connection, the next one starts clean
                return
            num_requests += 1

    def _next_request(self) -> Optional[DeliveryRequest]:
        with self._lock:
            request, self._retry = self._retry, None
        if request is not None:
            return request
        return self.queue.pop(timeout=self.poll_interval)

    def _deliver(self, connection: Connection, request: DeliveryRequest) -> bool:
        try:
            response = connection.send(request)
        except Exception as e:
            self._handle_failure(request, e)
            return False

        with self._lock:
            self._consecutive_errors = 0
        self._record_response(request, response)
        return True

    def _record_response(self, request: DeliveryRequest, response: Any) -> bool:
        if response.is_success:
            with self._lock:
                self._total_delivered += 1
            logger.debug(f"Delivered {request.batch_id} with {request.message_count} messages: {response.status_code}")
            return True

        # The collector understood the request and refused it, retrying cannot help
        with self._lock:
            self._total_rejected += 1
        logger.error(f"Collector rejected {request.batch_id} with {request.message_count} messages: HTTP {response.status_code}")
        return False

    def _handle_failure(self, request: DeliveryRequest, error: Exception) -> None:
        with self._lock:
            self._consecutive_errors += 1
            self._total_failed_attempts += 1
            consecutive_errors = self._consecutive_errors
        request.attempts += 1

        delay = backoff_seconds(consecutive_errors, self.backoff_step, self.backoff_max)
        logger.error(f"Delivery of {request.batch_id} failed (attempt {request.attempts}): {error}. Retrying in {delay:.1f}s")
        self._wait(delay)

        if self.queue.try_push(request):
            with self._lock:
                self._total_requeued += 1
            return

        with self._lock:
            self._retry = request
        logger.warning(f"Delivery queue full, holding {request.batch_id} for the next connection")

    def _wait(self, seconds: float) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            self._stop_event.wait(seconds)
