"""Tests for the delivery worker: retries, backoff and connection rotation."""

import threading
import time

import httpx
import pytest

from logpulse_client.config import QueuePolicy
from logpulse_client.queuer import DeliveryQueue
from logpulse_client.sender import Connection, DeliveryWorker, RetryableHTTPError, backoff_seconds, is_retryable_status


class CountingFactory:
    def __init__(self, transport):
        self.transport = transport
        self.opened = 0

    def __call__(self):
        self.opened += 1
        return Connection(transport=self.transport)


@pytest.fixture
def queue():
    return DeliveryQueue(capacity=5, policy=QueuePolicy.BLOCKING)


def test_backoff_grows_linearly_and_caps_at_thirty():
    delays = [backoff_seconds(n) for n in range(1, 18)]

    assert delays == [2, 4, 6, 8, 10, 12, 14, 16, 18, 20, 22, 24, 26, 28, 30, 30, 30]


def test_retryable_statuses():
    assert is_retryable_status(500)
    assert is_retryable_status(503)
    assert is_retryable_status(429)
    assert is_retryable_status(408)
    assert not is_retryable_status(200)
    assert not is_retryable_status(400)
    assert not is_retryable_status(401)


def test_consecutive_failures_back_off_and_requeue(queue, collector, make_request):
    collector.outcomes = [httpx.ConnectError("connection refused")] * 17
    request = make_request()
    queue.push(request)
    sleeps = []

    def record_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 17:
            worker.stop()

    factory = CountingFactory(collector.transport)
    worker = DeliveryWorker(queue, connection_factory=factory, sleep=record_sleep)
    worker.run()

    assert sleeps == [2, 4, 6, 8, 10, 12, 14, 16, 18, 20, 22, 24, 26, 28, 30, 30, 30]
    assert request.attempts == 17
    # Every failure abandons the connection
    assert factory.opened == 17
    # The very same request is back on the queue
    assert queue.size() == 1
    assert queue.pop() is request
    assert worker.in_flight == 0


def test_connection_rotates_after_requests_per_conn(queue, collector, make_request, wait_until):
    factory = CountingFactory(collector.transport)
    worker = DeliveryWorker(queue, connection_factory=factory, requests_per_conn=2)
    for i in range(3):
        queue.push(make_request(bytes([i])))

    worker.start()
    try:
        assert wait_until(lambda: worker.delivered == 3)
        assert worker.connections_opened == 2
        assert factory.opened == 2
    finally:
        worker.stop()

    assert [request.content for request in collector.requests] == [b"\x00", b"\x01", b"\x02"]


def test_failed_request_is_retried_byte_for_byte(queue, collector, make_request, wait_until):
    collector.outcomes = [httpx.ReadTimeout("timed out")]
    request = make_request(b"\x92\xa1A\xa1B")
    queue.push(request)
    worker = DeliveryWorker(queue, connection_factory=CountingFactory(collector.transport), sleep=lambda seconds: None)

    worker.start()
    try:
        assert wait_until(lambda: worker.delivered == 1)
    finally:
        worker.stop()

    assert collector.request_count == 2
    assert collector.requests[0].content == collector.requests[1].content == b"\x92\xa1A\xa1B"
    assert collector.requests[1].headers["Content-Type"] == "application/msgpack"
    assert request.attempts == 1
    assert worker.get_stats()["consecutive_errors"] == 0


def test_server_errors_are_retried(queue, collector, make_request, wait_until):
    collector.outcomes = [503, 500]
    queue.push(make_request())
    worker = DeliveryWorker(queue, connection_factory=CountingFactory(collector.transport), sleep=lambda seconds: None)

    worker.start()
    try:
        assert wait_until(lambda: worker.delivered == 1)
    finally:
        worker.stop()

    stats = worker.get_stats()
    assert stats["total_failed_attempts"] == 2
    assert stats["total_requeued"] == 2
    assert collector.request_count == 3


def test_client_errors_are_not_retried(queue, collector, make_request, wait_until):
    collector.outcomes = [401]
    sleeps = []
    queue.push(make_request())
    worker = DeliveryWorker(queue, connection_factory=CountingFactory(collector.transport), sleep=sleeps.append)

    worker.start()
    try:
        assert wait_until(lambda: worker.get_stats()["total_rejected"] == 1)
        time.sleep(0.1)
    finally:
        worker.stop()

    assert collector.request_count == 1
    assert queue.is_empty()
    assert sleeps == []
    assert worker.delivered == 0


def test_failed_request_is_held_when_queue_refilled(collector, make_request, wait_until):
    queue = DeliveryQueue(capacity=1, policy=QueuePolicy.BLOCKING)
    collector.outcomes = [httpx.ConnectError("connection reset")]
    first, second = make_request(b"first"), make_request(b"second")
    queue.push(first)

    def refill_during_backoff(seconds):
        # A producer fills the queue while the worker is backing off
        queue.try_push(second)

    worker = DeliveryWorker(queue, connection_factory=CountingFactory(collector.transport), sleep=refill_during_backoff)
    worker.start()
    try:
        assert wait_until(lambda: worker.delivered == 2)
    finally:
        worker.stop()

    assert [request.content for request in collector.requests] == [b"first", b"first", b"second"]
    assert worker.is_idle()


def test_send_now_delivers_on_the_calling_thread(queue, collector, make_request):
    worker = DeliveryWorker(queue, connection_factory=CountingFactory(collector.transport))

    assert worker.send_now(make_request(b"now")) is True
    assert collector.requests[0].content == b"now"
    assert not worker.is_alive()
    assert worker.delivered == 1


def test_send_now_reports_failure(queue, collector, make_request):
    collector.outcomes = [httpx.ConnectError("connection refused")]
    worker = DeliveryWorker(queue, connection_factory=CountingFactory(collector.transport))
    request = make_request()

    assert worker.send_now(request) is False
    assert request.attempts == 1
    assert worker.in_flight == 0
    assert queue.is_empty()


def test_send_now_counts_every_delivery_across_threads(queue, collector, make_request):
    worker = DeliveryWorker(queue, connection_factory=CountingFactory(collector.transport))

    def send_many():
        for _ in range(25):
            worker.send_now(make_request())

    threads = [threading.Thread(target=send_many) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5.0)

    assert collector.request_count == 200
    assert worker.delivered == 200
    assert worker.get_stats()["in_flight"] == 0


def test_stop_is_prompt_while_waiting_for_work(queue, collector):
    worker = DeliveryWorker(queue, connection_factory=CountingFactory(collector.transport), poll_interval=0.05)
    worker.start()
    assert worker.is_alive()

    start = time.monotonic()
    worker.stop(timeout=2.0)

    assert time.monotonic() - start < 1.0
    assert not worker.is_alive()


def test_connection_raises_retryable_error_for_server_errors(collector, make_request):
    collector.outcomes = [502]

    with Connection(transport=collector.transport) as connection:
        with pytest.raises(RetryableHTTPError) as excinfo:
            connection.send(make_request())

    assert excinfo.value.status_code == 502
    assert not connection.is_open


def test_invalid_requests_per_conn(queue):
    with pytest.raises(ValueError):
        DeliveryWorker(queue, requests_per_conn=0)
