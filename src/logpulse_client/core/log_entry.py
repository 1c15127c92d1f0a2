"""Structured log entry model.

A LogEntry is the intermediary between an application logger and the log
device: it normalizes the message and timestamp and serializes to the
dictionary shape the collector expects.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

MESSAGE_MAX_BYTES = 8192
DT_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class LogEntry(BaseModel):
    """A single log line ready to be written to the log device."""

    model_config = ConfigDict(frozen=True)

    level: str
    dt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message: str
    progname: Optional[str] = None
    tags: Optional[List[str]] = None
    time_ms: Optional[float] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    event: Optional[Dict[str, Any]] = None

    @field_validator("message", mode="before")
    @classmethod
    def _normalize_message(cls, value: Any) -> str:
        # Non-string messages are logged as their repr, like the stdlib logger does
        if not isinstance(value, str):
            value = repr(value)
        encoded = value.encode("utf-8")
        if len(encoded) <= MESSAGE_MAX_BYTES:
            return value
        return encoded[:MESSAGE_MAX_BYTES].decode("utf-8", errors="ignore")

    @field_validator("dt")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        # Naive datetimes are taken as local time
        return value.astimezone(timezone.utc)

    @field_serializer("dt")
    def _serialize_dt(self, value: datetime) -> str:
        return value.strftime(DT_FORMAT)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the entry to a dictionary, leaving out blank values."""
        data = self.model_dump(mode="json")
        return {key: value for key, value in data.items() if value is not None and value != {} and value != []}
