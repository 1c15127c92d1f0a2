"""Core data models for the logpulse client."""

from .log_entry import MESSAGE_MAX_BYTES, LogEntry

__all__ = ["LogEntry", "MESSAGE_MAX_BYTES"]
