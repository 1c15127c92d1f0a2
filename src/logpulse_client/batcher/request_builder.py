"""Request building for batched log delivery.

This module turns a drained batch of messages into a ready-to-send HTTP
request. Batches are encoded with msgpack, preserving message order, and
authenticated with the collector API key.
"""

from __future__ import annotations

import base64
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import msgpack

from .. import __version__

CONTENT_TYPE = "application/msgpack"
USER_AGENT = f"logpulse-python/{__version__} (HTTP)"


@dataclass
class DeliveryRequest:
    """A built request waiting for delivery.

    The body and headers never change once built; a failed request is
    requeued as the same instance.
    """

    url: str
    headers: Dict[str, str]
    body: bytes
    message_count: int
    method: str = "POST"
    batch_id: str = field(default_factory=lambda: f"batch_{uuid.uuid4().hex[:12]}")
    created_at: float = field(default_factory=time.time)
    attempts: int = 0  # Failed delivery attempts so far


def authorization_header(api_key: str) -> str:
    """Get the Basic authorization header value for an API key."""
    encoded = base64.urlsafe_b64encode(api_key.encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def _encode_default(obj: Any) -> Any:
    """Fallback msgpack encoder for structured log objects."""
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Cannot serialize {type(obj).__name__} for delivery")


def encode_batch(batch: List[Any]) -> bytes:
    """Encode a batch of messages as a msgpack array."""
    return msgpack.packb(batch, use_bin_type=True, default=_encode_default)


class RequestBuilder:
    """Builds delivery requests from drained batches."""

    def __init__(self, api_key: str, endpoint: str, user_agent: str = USER_AGENT):
        self.endpoint = endpoint
        self._headers = {
            "Authorization": authorization_header(api_key),
            "Content-Type": CONTENT_TYPE,
            "User-Agent": user_agent,
        }

    def build(self, batch: List[Any]) -> Optional[DeliveryRequest]:
        """Build a request for a batch.

        Args:
            batch: Messages in the order they were written

        Returns:
            DeliveryRequest, or None if the batch is empty
        """
        if not batch:
            return None

        return DeliveryRequest(
            url=self.endpoint,
            headers=dict(self._headers),
            body=encode_batch(batch),
            message_count=len(batch),
        )
