# ============================================================================
# IN-MEMORY TRANSPORT TESTS
# ============================================================================
# STATUS: Tests - Queue delivery semantics
# PURPOSE: Verify delay, dedup window, visibility timeout and settlement
# CREATED: 18 OCT 2026
# ============================================================================
"""
In-Memory Transport Tests

Run with:
    pytest tests/test_memory_queue.py -v
"""

import asyncio

import pytest

from core.models import JobMessage, JobMetadata, JobParameters
from messaging import (
    InMemoryDeadLetterSink,
    InMemoryQueue,
    MessageSettlementError,
    SendOptions,
    content_dedup_key,
)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_message(job_id: str = "job-1", user_id: str = "user-1") -> JobMessage:
    return JobMessage(
        metadata=JobMetadata(job_id=job_id, submitter_user_id=user_id, organization_id="org-1"),
        params=JobParameters(
            project_id="proj-1",
            plan_id="plan-1",
            org_id="org-1",
            user_id=user_id,
            preview_url="https://preview.example.com/proj-1",
        ),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return InMemoryQueue(visibility_timeout_seconds=30, dedup_window_seconds=300, clock=clock)


# ============================================================================
# SEND / RECEIVE
# ============================================================================

class TestSendReceive:
    """Basic delivery."""

    def test_fifo_delivery(self, queue):
        async def run_test():
            for i in range(3):
                await queue.send(make_message(f"job-{i}"))
            batch = await queue.receive_batch(max_messages=10)
            return [e.body["metadata"]["job_id"] for e in batch]

        assert asyncio.run(run_test()) == ["job-0", "job-1", "job-2"]

    def test_batch_size_respected(self, queue):
        async def run_test():
            for i in range(5):
                await queue.send(make_message(f"job-{i}"))
            first = await queue.receive_batch(max_messages=2)
            second = await queue.receive_batch(max_messages=10)
            return len(first), len(second)

        assert asyncio.run(run_test()) == (2, 3)

    def test_delayed_message_hidden_until_due(self, queue, clock):
        async def run_test():
            await queue.send(make_message(), SendOptions(delay_seconds=60))
            early = await queue.receive_batch()
            clock.advance(59)
            still_early = await queue.receive_batch()
            clock.advance(1)
            due = await queue.receive_batch()
            return len(early), len(still_early), len(due)

        assert asyncio.run(run_test()) == (0, 0, 1)

    def test_body_is_a_copy(self, queue):
        async def run_test():
            await queue.send(make_message())
            (envelope,) = await queue.receive_batch()
            envelope.body["metadata"]["retry_count"] = 99
            return queue.peek_bodies()[0]["metadata"]["retry_count"]

        assert asyncio.run(run_test()) == 0


# ============================================================================
# DEDUPLICATION
# ============================================================================

class TestDeduplication:
    """Dedup window absorbs repeated keys."""

    def test_same_key_absorbed(self, queue):
        async def run_test():
            await queue.send(make_message("job-a"), SendOptions(deduplication_id="k"))
            await queue.send(make_message("job-b"), SendOptions(deduplication_id="k"))

        asyncio.run(run_test())
        assert len(queue) == 1
        assert queue.sent_count == 1
        assert queue.absorbed_count == 1
        assert queue.peek_bodies()[0]["metadata"]["job_id"] == "job-a"

    def test_different_keys_both_enqueued(self, queue):
        async def run_test():
            await queue.send(make_message("job-a"), SendOptions(deduplication_id="k1"))
            await queue.send(make_message("job-b"), SendOptions(deduplication_id="k2"))

        asyncio.run(run_test())
        assert len(queue) == 2

    def test_key_reusable_after_window(self, queue, clock):
        async def run_test():
            await queue.send(make_message("job-a"), SendOptions(deduplication_id="k"))
            clock.advance(301)
            await queue.send(make_message("job-b"), SendOptions(deduplication_id="k"))

        asyncio.run(run_test())
        assert len(queue) == 2
        assert queue.absorbed_count == 0

    def test_content_based_deduplication(self, queue):
        message = make_message("job-a")

        async def run_test():
            await queue.send(message, SendOptions(content_based_deduplication=True))
            await queue.send(message, SendOptions(content_based_deduplication=True))

        asyncio.run(run_test())
        assert len(queue) == 1

    def test_content_based_deduplication_ignores_job_identity(self, queue):
        async def run_test():
            await queue.send(make_message("job-a"), SendOptions(content_based_deduplication=True))
            await queue.send(make_message("job-b"), SendOptions(content_based_deduplication=True))

        asyncio.run(run_test())
        assert len(queue) == 1
        assert queue.absorbed_count == 1
        assert queue.peek_bodies()[0]["metadata"]["job_id"] == "job-a"

    def test_content_based_deduplication_distinguishes_targets(self, queue):
        async def run_test():
            await queue.send(
                make_message("job-a", user_id="user-1"),
                SendOptions(content_based_deduplication=True),
            )
            await queue.send(
                make_message("job-b", user_id="user-2"),
                SendOptions(content_based_deduplication=True),
            )

        asyncio.run(run_test())
        assert len(queue) == 2

    def test_content_key_ignores_metadata(self):
        a = make_message("job-a").to_queue_body()
        b = make_message("job-b").to_queue_body()
        assert content_dedup_key(a) == content_dedup_key(b)


# ============================================================================
# VISIBILITY & SETTLEMENT
# ============================================================================

class TestSettlement:
    """ack / retry / visibility timeout."""

    def test_ack_removes(self, queue):
        async def run_test():
            await queue.send(make_message())
            (envelope,) = await queue.receive_batch()
            await envelope.ack()

        asyncio.run(run_test())
        assert len(queue) == 0
        assert queue.acked_count == 1

    def test_unsettled_message_redelivered_after_visibility_timeout(self, queue, clock):
        async def run_test():
            await queue.send(make_message())
            (first,) = await queue.receive_batch()
            hidden = await queue.receive_batch()
            in_flight = queue.in_flight_count
            clock.advance(30)
            (second,) = await queue.receive_batch()
            return first, hidden, in_flight, second

        first, hidden, in_flight, second = asyncio.run(run_test())
        assert hidden == []
        assert in_flight == 1
        assert second.id == first.id
        assert second.delivery_count == 2

    def test_retry_replaces_body_and_is_immediately_visible(self, queue):
        async def run_test():
            await queue.send(make_message())
            (envelope,) = await queue.receive_batch()
            body = dict(envelope.body)
            body["metadata"] = {**body["metadata"], "retry_count": 1}
            await envelope.retry(body)
            return await queue.receive_batch()

        (redelivered,) = asyncio.run(run_test())
        assert redelivered.body["metadata"]["retry_count"] == 1
        assert queue.redelivered_count == 1

    def test_settle_twice_rejected(self, queue):
        async def run_test():
            await queue.send(make_message())
            (envelope,) = await queue.receive_batch()
            await envelope.ack()
            await envelope.ack()

        with pytest.raises(MessageSettlementError):
            asyncio.run(run_test())

    def test_expired_lease_cannot_settle(self, queue, clock):
        async def run_test():
            await queue.send(make_message())
            (stale,) = await queue.receive_batch()
            clock.advance(30)
            (fresh,) = await queue.receive_batch()
            with pytest.raises(MessageSettlementError):
                await stale.ack()
            await fresh.ack()

        asyncio.run(run_test())
        assert len(queue) == 0


class TestDeadLetterSink:
    """In-memory sink."""

    def test_fail_with_raises(self):
        sink = InMemoryDeadLetterSink()
        sink.fail_with = ConnectionError("dlq down")

        with pytest.raises(ConnectionError):
            asyncio.run(sink.send(object()))
        assert sink.records == []
