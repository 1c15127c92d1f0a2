"""Configuration module for the logpulse client."""

from .logger_config import setup_logging
from .settings import DEFAULT_ENDPOINT, DeviceConfig, QueuePolicy

__all__ = ["DeviceConfig", "QueuePolicy", "DEFAULT_ENDPOINT", "setup_logging"]
