"""Configuration management for the logpulse HTTP log device.

This module provides the device configuration dataclass and applies
environment variable overrides for the settings operators usually tune
per deployment (API key, endpoint, batch sizing, queue policy).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

DEFAULT_ENDPOINT = "https://logs.logpulse.dev/frames"
DEFAULT_BATCH_SIZE = 1000
DEFAULT_FLUSH_INTERVAL = 1.0


class QueuePolicy(str, Enum):
    """What the delivery queue does when it is full."""

    BLOCKING = "blocking"  # Apply back pressure to the producer
    DROPPING = "dropping"  # Discard the request and keep the producer moving


@dataclass
class DeviceConfig:
    """Complete HTTP log device configuration.

    Values passed explicitly always win. Settings left unset fall back to
    their LOGPULSE_* environment variable, then to the built-in default.
    """

    # Collector settings
    api_key: str = ""  # Empty = LOGPULSE_API_KEY
    endpoint: str = ""  # Empty = LOGPULSE_ENDPOINT or DEFAULT_ENDPOINT

    # Batching
    batch_size: Optional[int] = None  # None = LOGPULSE_BATCH_SIZE or DEFAULT_BATCH_SIZE
    flush_interval: Optional[float] = None  # None = LOGPULSE_FLUSH_INTERVAL or DEFAULT_FLUSH_INTERVAL
    flush_poll_interval: float = 0.1  # How often the flush loop checks the clock
    flush_continuously: bool = True  # False = no background threads, call flush()

    # Delivery queue
    delivery_queue_capacity: int = 3
    queue_policy: Optional[QueuePolicy] = None  # None = LOGPULSE_QUEUE_POLICY or BLOCKING

    # Connections
    requests_per_conn: int = 2500  # Requests per persistent connection before rotation
    connect_timeout: float = 10.0
    write_timeout: float = 10.0
    read_timeout: float = 30.0

    # Retry backoff
    backoff_step: float = 2.0
    backoff_max: float = 30.0

    # Shutdown
    shutdown_attempts: int = 4
    shutdown_poll_interval: float = 1.0  # Also bounds the final flush's wait for queue space

    def __post_init__(self):
        """Apply environment variable overrides, then defaults."""
        self._apply_env_overrides()

        if self.batch_size is None:
            self.batch_size = DEFAULT_BATCH_SIZE
        if self.flush_interval is None:
            self.flush_interval = DEFAULT_FLUSH_INTERVAL
        self.queue_policy = QueuePolicy(self.queue_policy or QueuePolicy.BLOCKING)

    def _apply_env_overrides(self):
        """Fill settings that were not passed from environment variables."""
        if not self.api_key and (api_key := os.getenv("LOGPULSE_API_KEY")):
            self.api_key = api_key

        if not self.endpoint:
            self.endpoint = os.getenv("LOGPULSE_ENDPOINT") or DEFAULT_ENDPOINT

        if self.batch_size is None and (batch_size := os.getenv("LOGPULSE_BATCH_SIZE")):
            try:
                self.batch_size = int(batch_size)
            except ValueError:
                logger.warning(f"Invalid batch size: {batch_size}")

        if self.flush_interval is None and (flush_interval := os.getenv("LOGPULSE_FLUSH_INTERVAL")):
            try:
                self.flush_interval = float(flush_interval)
            except ValueError:
                logger.warning(f"Invalid flush interval: {flush_interval}")

        if self.queue_policy is None and (queue_policy := os.getenv("LOGPULSE_QUEUE_POLICY")):
            try:
                self.queue_policy = QueuePolicy(queue_policy.lower())
            except ValueError:
                logger.warning(f"Invalid queue policy: {queue_policy}")

    def validate(self) -> tuple[bool, list[str]]:
        """Validate the configuration.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        # Check required fields
        if not self.api_key or not self.api_key.strip():
            errors.append("API key is required")

        if not self.endpoint:
            errors.append("Endpoint is required")

        # Validate sizes and intervals
        if self.batch_size <= 0:
            errors.append("Batch size must be positive")

        if self.flush_interval <= 0:
            errors.append("Flush interval must be positive")

        if self.requests_per_conn <= 0:
            errors.append("Requests per connection must be positive")

        if self.delivery_queue_capacity <= 0:
            errors.append("Delivery queue capacity must be positive")

        if self.shutdown_attempts < 0:
            errors.append("Shutdown attempts cannot be negative")

        return len(errors) == 0, errors

    def get_timeout_config(self) -> dict:
        """Get timeout settings for a delivery connection."""
        return {
            "connect": self.connect_timeout,
            "write": self.write_timeout,
            "read": self.read_timeout,
            "pool": self.connect_timeout,
        }
