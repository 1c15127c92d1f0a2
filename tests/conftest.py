"""Shared fixtures for the logpulse client tests."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, List

import httpx
import msgpack
import pytest

from logpulse_client.batcher.request_builder import DeliveryRequest

ENV_VARS = [
    "LOGPULSE_API_KEY",
    "LOGPULSE_ENDPOINT",
    "LOGPULSE_BATCH_SIZE",
    "LOGPULSE_FLUSH_INTERVAL",
    "LOGPULSE_QUEUE_POLICY",
]


class Collector:
    """Fake log collector behind an httpx.MockTransport.

    ``outcomes`` is consumed one entry per request: an int is returned as the
    status code, an exception instance is raised. Once empty, every request
    gets a 202.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.outcomes: List[Any] = []
        self._lock = threading.Lock()
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            outcome = self.outcomes.pop(0) if self.outcomes else 202
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome)

    @property
    def request_count(self) -> int:
        with self._lock:
            return len(self.requests)

    def batches(self) -> List[Any]:
        with self._lock:
            return [msgpack.unpackb(request.content, raw=False) for request in self.requests]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def collector() -> Collector:
    return Collector()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait_until


@pytest.fixture
def make_request() -> Callable[..., DeliveryRequest]:
    def _make_request(body: bytes = b"\x91\xa1x", url: str = "https://collector.test/frames") -> DeliveryRequest:
        return DeliveryRequest(url=url, headers={"Content-Type": "application/msgpack"}, body=body, message_count=1)

    return _make_request
