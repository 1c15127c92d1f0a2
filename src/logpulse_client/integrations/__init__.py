"""Logging framework integrations."""

from .loguru_sink import LoguruSink, install

__all__ = ["LoguruSink", "install"]
