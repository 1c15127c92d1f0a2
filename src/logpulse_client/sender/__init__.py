"""HTTP transport module for delivering batches to the log collector."""

from .connection import Connection, RetryableHTTPError, is_retryable_status
from .delivery_worker import DeliveryWorker, backoff_seconds

__all__ = ["Connection", "DeliveryWorker", "RetryableHTTPError", "backoff_seconds", "is_retryable_status"]
