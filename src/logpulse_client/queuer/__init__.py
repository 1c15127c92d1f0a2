"""Message buffering and request queuing for the HTTP log device."""

from .delivery_queue import DeliveryQueue
from .message_buffer import MessageBuffer

__all__ = ["MessageBuffer", "DeliveryQueue"]
