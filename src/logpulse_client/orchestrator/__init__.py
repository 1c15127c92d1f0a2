"""Log device orchestration module."""

from .log_device import HTTPLogDevice
from .shutdown import ShutdownCoordinator

__all__ = ["HTTPLogDevice", "ShutdownCoordinator"]
