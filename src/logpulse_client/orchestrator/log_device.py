"""HTTP log device coordinating the log delivery pipeline.

This module wires the delivery pipeline together:
write → MessageBuffer → (size | interval flush) → RequestBuilder →
DeliveryQueue → DeliveryWorker → collector

Background threads are started lazily on the first write and re-checked on
every write, so a device created before ``os.fork()`` keeps working in the
child process.
"""

from __future__ import annotations

import os
import threading
from typing import Any, Optional

import httpx
from loguru import logger

from ..batcher import FlushScheduler, RequestBuilder
from ..batcher.request_builder import DeliveryRequest
from ..config.settings import DeviceConfig
from ..queuer import DeliveryQueue, MessageBuffer
from ..sender import Connection, DeliveryWorker
from .shutdown import ShutdownCoordinator


class HTTPLogDevice:
    """Buffers log messages and delivers them in batches over HTTP.

    By default a full delivery queue applies back pressure to writers. Pass
    ``queue_policy=QueuePolicy.DROPPING`` to discard batches instead.

    Example:
        device = HTTPLogDevice("my_api_key", batch_size=500)
        device.write(entry.to_dict())
        device.close()
    """

    def __init__(
        self,
        api_key: str = "",
        *,
        config: Optional[DeviceConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
        **options: Any,
    ):
        """Initialize the log device.

        Args:
            api_key: Collector API key, falls back to LOGPULSE_API_KEY
            config: Complete configuration, used instead of api_key/options
            transport: httpx transport override for every delivery connection
            **options: Any DeviceConfig field

        Raises:
            ValueError: If the configuration is invalid (e.g. blank API key)
        """
        self.config = config if config is not None else DeviceConfig(api_key=api_key, **options)

        is_valid, errors = self.config.validate()
        if not is_valid:
            raise ValueError(f"Invalid log device configuration: {'; '.join(errors)}")

        self._transport = transport
        self._closed = False
        self._start_lock = threading.Lock()
        self._owner_pid: Optional[int] = None

        self._init_components()

    @classmethod
    def from_config(cls, config: DeviceConfig, transport: Optional[httpx.BaseTransport] = None) -> HTTPLogDevice:
        """Create a device from an existing configuration."""
        return cls(config=config, transport=transport)

    def _init_components(self) -> None:
        """Initialize all pipeline components."""
        config = self.config

        self.buffer = MessageBuffer(batch_size=config.batch_size)
        self.builder = RequestBuilder(api_key=config.api_key, endpoint=config.endpoint)
        self.queue = DeliveryQueue(capacity=config.delivery_queue_capacity, policy=config.queue_policy)

        self.worker = DeliveryWorker(
            queue=self.queue,
            connection_factory=self._new_connection,
            requests_per_conn=config.requests_per_conn,
            backoff_step=config.backoff_step,
            backoff_max=config.backoff_max,
        )

        self.scheduler = FlushScheduler(
            buffer=self.buffer,
            builder=self.builder,
            dispatch=self._dispatch,
            flush_interval=config.flush_interval,
            poll_interval=config.flush_poll_interval,
        )

        self._shutdown = ShutdownCoordinator(
            scheduler=self.scheduler,
            worker=self.worker,
            queue=self.queue,
            final_flush=self._final_flush if config.flush_continuously else self.flush,
            attempts=config.shutdown_attempts,
            poll_interval=config.shutdown_poll_interval,
        )

    def __enter__(self) -> HTTPLogDevice:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, message: Any) -> bool:
        """Buffer a message, flushing on this thread if the buffer is full.

        Args:
            message: Serializable message (str, bytes, msgpack-native value or object with to_dict())

        Returns:
            True if buffered, False if the device is already closed
        """
        if self._closed:
            logger.warning("Log device is closed, dropping message")
            return False

        if self.config.flush_continuously:
            self._ensure_started()

        self.buffer.enqueue(message)
        self.scheduler.flush_if_full()
        return True

    def flush(self) -> bool:
        """Drain the buffer and deliver it right now on the calling thread.

        Bypasses the delivery queue.

        Returns:
            True if nothing was pending or the collector accepted the batch
        """
        self.scheduler.mark_flushed()
        request = self.builder.build(self.buffer.drain())
        if request is None:
            return True
        return self.worker.send_now(request)

    def close(self) -> None:
        """Stop background work and attempt one last delivery.

        Calling close more than once is a no-op.
        """
        if self._closed:
            return
        self._closed = True

        if self.config.flush_continuously and not self.buffer.is_empty():
            self._ensure_started()

        self._shutdown.close()

        stats = self.worker.get_stats()
        logger.info(f"Closed log device. Stats - Delivered: {stats['total_delivered']}, Failed attempts: {stats['total_failed_attempts']}, Rejected: {stats['total_rejected']}, Dropped: {self.queue.get_stats()['total_dropped']}")

    def get_stats(self) -> dict:
        """Get statistics for every pipeline component."""
        return {
            "closed": self._closed,
            "endpoint": self.config.endpoint,
            "buffer": self.buffer.get_stats(),
            "scheduler": self.scheduler.get_stats(),
            "queue": self.queue.get_stats(),
            "worker": self.worker.get_stats(),
        }

    def _ensure_started(self) -> None:
        """Start or restart the background threads for this process."""
        pid = os.getpid()
        if self._owner_pid == pid and self.scheduler.is_alive() and self.worker.is_alive():
            return

        with self._start_lock:
            if self._owner_pid is not None and self._owner_pid != pid:
                logger.info(f"Process changed ({self._owner_pid} -> {pid}), restarting delivery threads")

            self.worker.start()
            self.scheduler.start()
            self._owner_pid = pid

    def _dispatch(self, request: DeliveryRequest) -> bool:
        if self.config.flush_continuously:
            return self.queue.push(request)
        # Nothing drains the queue without the worker thread
        return self.worker.send_now(request)

    def _final_flush(self) -> None:
        """Flush once more without waiting on a queue the worker may never drain."""
        self.scheduler.flush(dispatch=self._dispatch_final)

    def _dispatch_final(self, request: DeliveryRequest) -> bool:
        timeout = self.config.shutdown_poll_interval
        if self.queue.push(request, timeout=timeout):
            return True
        logger.warning(f"Delivery queue full at shutdown, abandoning {request.batch_id} with {request.message_count} messages")
        return False

    def _new_connection(self) -> Connection:
        return Connection(timeout=httpx.Timeout(**self.config.get_timeout_config()), transport=self._transport)
