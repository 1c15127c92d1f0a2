"""Persistent HTTP connection to the log collector."""

from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger

from ..batcher.request_builder import DeliveryRequest

RETRYABLE_STATUS_CODES = {408, 429}


class RetryableHTTPError(Exception):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Retryable HTTP {status_code}")


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600


class Connection:
    """A single keep-alive HTTP session used for many requests."""

    def __init__(
        self,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout or httpx.Timeout(30.0, connect=10.0, write=10.0)
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self.requests_sent = 0

    def __enter__(self) -> Connection:
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._client is not None

    def open(self) -> None:
        if self._client is not None:
            return

        # One pooled connection, so every request reuses the same socket
        self._client = httpx.Client(
            timeout=self.timeout,
            limits=httpx.Limits(max_connections=1, max_keepalive_connections=1),
            transport=self._transport,
        )
        logger.debug("Opened collector connection")

    def send(self, request: DeliveryRequest) -> httpx.Response:
        """Send one request over the open connection.

        Raises:
            RetryableHTTPError: The collector answered with a status worth retrying
            httpx.HTTPError: Transport level failure (connect, TLS, timeout, protocol)
        """
        if self._client is None:
            self.open()

        response = self._client.request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.body,
        )
        self.requests_sent += 1

        if is_retryable_status(response.status_code):
            raise RetryableHTTPError(response.status_code)

        return response

    def close(self) -> None:
        if self._client is None:
            return

        try:
            self._client.close()
        finally:
            self._client = None
            logger.debug(f"Closed collector connection after {self.requests_sent} requests")
