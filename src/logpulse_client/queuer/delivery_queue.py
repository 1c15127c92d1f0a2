"""Bounded queue of built delivery requests.

The delivery queue sits between batching and network I/O. When it is full
it either blocks the pushing thread (back pressure) or discards the request,
depending on the policy chosen at construction.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Optional

from loguru import logger

from ..batcher.request_builder import DeliveryRequest
from ..config.settings import QueuePolicy


class DeliveryQueue:
    """Thread-safe bounded queue with blocking or dropping overflow."""

    def __init__(self, capacity: int = 3, policy: QueuePolicy = QueuePolicy.BLOCKING):
        """Initialize the delivery queue.

        Args:
            capacity: Maximum number of requests held at once
            policy: Overflow behaviour, fixed for the lifetime of the queue
        """
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._policy = QueuePolicy(policy)
        self._queue: deque[DeliveryRequest] = deque()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)

        # Statistics
        self._total_pushed = 0
        self._total_popped = 0
        self._total_dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def policy(self) -> QueuePolicy:
        return self._policy

    def push(self, request: DeliveryRequest, timeout: Optional[float] = None) -> bool:
        """Add a request according to the overflow policy.

        Args:
            request: Request to enqueue
            timeout: Longest a blocking push waits for space, None waits indefinitely

        Returns:
            True if enqueued, False if dropped because the queue was full
        """
        if self._policy is QueuePolicy.DROPPING:
            accepted = self.try_push(request)
            if not accepted:
                with self._lock:
                    self._total_dropped += 1
                logger.debug(f"Delivery queue full, dropped request {request.batch_id} with {request.message_count} messages")
            return accepted

        deadline = None if timeout is None else time.monotonic() + timeout

        with self._not_full:
            while len(self._queue) >= self._capacity:
                if deadline is None:
                    self._not_full.wait()
                    continue

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._total_dropped += 1
                    logger.debug(f"Delivery queue still full after {timeout:.1f}s, dropped request {request.batch_id}")
                    return False
                self._not_full.wait(remaining)

            self._append(request)
            return True

    def try_push(self, request: DeliveryRequest) -> bool:
        """Add a request only if there is room right now.

        Returns:
            True if enqueued, False if the queue was full
        """
        with self._lock:
            if len(self._queue) >= self._capacity:
                return False
            self._append(request)
            return True

    def pop(self, timeout: Optional[float] = None) -> Optional[DeliveryRequest]:
        """Remove and return the oldest request.

        Args:
            timeout: Maximum time to wait, None waits indefinitely

        Returns:
            Request if available, None on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._not_empty:
            while not self._queue:
                if deadline is None:
                    self._not_empty.wait()
                    continue

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._not_empty.wait(remaining)

            request = self._queue.popleft()
            self._total_popped += 1
            self._not_full.notify()
            return request

    def size(self) -> int:
        """Return the current queue size."""
        with self._lock:
            return len(self._queue)

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return self.size() == 0

    def get_stats(self) -> dict:
        """Get queue statistics."""
        with self._lock:
            return {
                "current_size": len(self._queue),
                "capacity": self._capacity,
                "policy": self._policy.value,
                "total_pushed": self._total_pushed,
                "total_popped": self._total_popped,
                "total_dropped": self._total_dropped,
            }

    def _append(self, request: DeliveryRequest) -> None:
        # Caller holds self._lock
        self._queue.append(request)
        self._total_pushed += 1
        self._not_empty.notify()
