"""Batch building and flush scheduling for efficient transmission."""

from .flush_scheduler import FlushScheduler
from .request_builder import CONTENT_TYPE, USER_AGENT, DeliveryRequest, RequestBuilder, authorization_header, encode_batch

__all__ = ["FlushScheduler", "RequestBuilder", "DeliveryRequest", "authorization_header", "encode_batch", "CONTENT_TYPE", "USER_AGENT"]
