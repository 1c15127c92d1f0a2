"""logpulse client - batched, backpressure-aware log delivery over HTTP."""

__version__ = "1.0.0"

from .config import DeviceConfig, QueuePolicy  # noqa: E402
from .core import LogEntry  # noqa: E402
from .orchestrator import HTTPLogDevice  # noqa: E402

__all__ = ["HTTPLogDevice", "DeviceConfig", "QueuePolicy", "LogEntry"]
