"""In-memory message buffer for the HTTP log device.

This module provides the thread-safe accumulator that collects serialized
log messages between flushes. The buffer never rejects a writer; its
capacity is a soft threshold that tells the caller when to flush.
"""

from __future__ import annotations

import threading
from typing import Any, List


class MessageBuffer:
    """Thread-safe accumulator of pending messages with atomic drain."""

    def __init__(self, batch_size: int = 1000):
        """Initialize the message buffer.

        Args:
            batch_size: Number of messages at which the buffer reports full
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")

        self.batch_size = batch_size
        self._messages: List[Any] = []
        self._lock = threading.Lock()

        # Statistics
        self._total_enqueued = 0
        self._total_drained = 0
        self._drain_count = 0

    def enqueue(self, message: Any) -> None:
        """Append a message to the buffer."""
        with self._lock:
            self._messages.append(message)
            self._total_enqueued += 1

    def drain(self) -> List[Any]:
        """Swap the live buffer for an empty one and return the old contents.

        Returns:
            The buffered messages in enqueue order (may be empty)
        """
        with self._lock:
            batch = self._messages
            self._messages = []
            self._total_drained += len(batch)
            self._drain_count += 1
            return batch

    def is_full(self) -> bool:
        """Check if the buffer reached its batch size."""
        return self.size() >= self.batch_size

    def is_empty(self) -> bool:
        """Check if the buffer holds no messages."""
        return self.size() == 0

    def size(self) -> int:
        """Return the current number of buffered messages."""
        with self._lock:
            return len(self._messages)

    def get_stats(self) -> dict:
        """Get buffer statistics."""
        with self._lock:
            return {
                "current_size": len(self._messages),
                "batch_size": self.batch_size,
                "total_enqueued": self._total_enqueued,
                "total_drained": self._total_drained,
                "drain_count": self._drain_count,
            }
