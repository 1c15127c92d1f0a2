"""Loguru sink that ships application logs through an HTTP log device."""

from __future__ import annotations

from typing import Any, Dict, Optional

from loguru import logger as default_logger

from ..core.log_entry import LogEntry
from ..orchestrator.log_device import HTTPLogDevice

PACKAGE_NAME = __name__.split(".")[0]
_PLAIN_TYPES = (str, int, float, bool, type(None))


class LoguruSink:
    """Converts loguru records to log entries and writes them to a device."""

    def __init__(self, device: HTTPLogDevice, include_extra: bool = True):
        self.device = device
        self.include_extra = include_extra

    def __call__(self, message: Any) -> None:
        self.device.write(self.to_entry(message.record))

    @staticmethod
    def accepts(record: Dict[str, Any]) -> bool:
        """Filter out the device's own diagnostics so it never ships itself."""
        name = record.get("name") or ""
        return name != PACKAGE_NAME and not name.startswith(f"{PACKAGE_NAME}.")

    def to_entry(self, record: Dict[str, Any]) -> LogEntry:
        context = {}
        if self.include_extra:
            context = {key: value if isinstance(value, _PLAIN_TYPES) else repr(value) for key, value in record["extra"].items()}

        return LogEntry(
            level=record["level"].name,
            dt=record["time"],
            message=record["message"],
            progname=record["name"],
            context=context,
            event=_exception_event(record),
        )


def _exception_event(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    exception = record.get("exception")
    if exception is None or exception.type is None:
        return None
    return {"exception": {"name": exception.type.__name__, "message": str(exception.value)}}


def install(device: HTTPLogDevice, level: str = "DEBUG", logger: Any = default_logger) -> int:
    """Add a sink for ``device`` to a loguru logger.

    Returns:
        Handler id, pass it to ``logger.remove`` to detach the device
    """
    return logger.add(LoguruSink(device), level=level, filter=LoguruSink.accepts, format="{message}")
