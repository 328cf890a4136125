# ============================================================================
# IN-MEMORY TRANSPORT
# ============================================================================
# STATUS: Messaging - In-process queue and dead-letter sink
# PURPOSE: Broker semantics (delay, dedup window, visibility timeout) for
#          tests and local runs
# CREATED: 18 OCT 2026
# ============================================================================
"""
In-Memory Transport

A single-process queue that models the delivery semantics the consumer
depends on:

- delayed sends are not receivable before delay_seconds elapse
- a deduplication_id seen within the dedup window is silently absorbed
- received messages are hidden for the visibility timeout; if they are not
  settled they become receivable again
- ack() removes a message, retry(body) makes it receivable immediately with
  the updated body, keeping its position in the queue
- an envelope settles at most once, and only while its lease is current

All operations run on the event loop thread without awaiting, so no locking
is needed.
"""

import copy
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core.models import DeadLetterRecord, JobMessage
from messaging.transport import (
    BatchSource,
    DeadLetterSink,
    MessageEnvelope,
    QueueTransport,
    SendOptions,
    content_dedup_key,
)

logger = logging.getLogger(__name__)


class MessageSettlementError(RuntimeError):
    """Raised when an envelope is settled twice or after its lease expired."""
    pass


@dataclass
class _StoredMessage:
    id: str
    body: Dict[str, Any]
    available_at: float
    delivery_count: int = 0
    lease: int = 0


class InMemoryEnvelope(MessageEnvelope):
    """Envelope for a message delivered by InMemoryQueue."""

    def __init__(
        self,
        queue: "InMemoryQueue",
        message_id: str,
        body: Dict[str, Any],
        delivery_count: int,
        lease: int,
    ):
        self.id = message_id
        self.body = body
        self.delivery_count = delivery_count
        self._queue = queue
        self._lease = lease
        self._settled = False

    @property
    def settled(self) -> bool:
        return self._settled

    def _settle(self) -> None:
        if self._settled:
            raise MessageSettlementError(f"Message {self.id} already settled")
        self._settled = True

    async def ack(self) -> None:
        self._settle()
        self._queue._ack(self.id, self._lease)

    async def retry(self, body: Dict[str, Any]) -> None:
        self._settle()
        self._queue._redeliver(self.id, self._lease, body)


class InMemoryQueue(QueueTransport, BatchSource):
    """In-process queue with delay, dedup window and visibility timeout."""

    def __init__(
        self,
        name: str = "screenshot-queue",
        visibility_timeout_seconds: float = 30.0,
        dedup_window_seconds: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.name = name
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.dedup_window_seconds = dedup_window_seconds
        self._clock = clock or time.monotonic
        self._messages: Dict[str, _StoredMessage] = {}
        self._dedup: Dict[str, float] = {}

        # Stats
        self.sent_count = 0
        self.absorbed_count = 0
        self.acked_count = 0
        self.redelivered_count = 0

    # =========================================================================
    # SEND
    # =========================================================================

    async def send(self, message: JobMessage, options: Optional[SendOptions] = None) -> None:
        options = options or SendOptions()
        now = self._clock()
        body = message.to_queue_body()

        self._expire_dedup(now)
        dedup_key = options.deduplication_id
        if dedup_key is None and options.content_based_deduplication:
            dedup_key = content_dedup_key(body)

        if dedup_key is not None:
            if dedup_key in self._dedup:
                self.absorbed_count += 1
                logger.info(
                    f"Duplicate absorbed on {self.name}: job={message.job_id} key={dedup_key}"
                )
                return
            self._dedup[dedup_key] = now + self.dedup_window_seconds

        delay = max(0, options.delay_seconds or 0)
        message_id = uuid.uuid4().hex
        self._messages[message_id] = _StoredMessage(
            id=message_id,
            body=body,
            available_at=now + delay,
        )
        self.sent_count += 1
        logger.debug(f"Enqueued {message_id} on {self.name} (delay={delay}s)")

    def _expire_dedup(self, now: float) -> None:
        expired = [key for key, expires_at in self._dedup.items() if expires_at <= now]
        for key in expired:
            del self._dedup[key]

    # =========================================================================
    # RECEIVE
    # =========================================================================

    async def receive_batch(
        self,
        max_messages: int = 10,
        max_wait_time: Optional[float] = None,
    ) -> List[MessageEnvelope]:
        """Return up to max_messages visible messages, oldest first. Never waits."""
        now = self._clock()
        envelopes: List[MessageEnvelope] = []

        for stored in self._messages.values():
            if len(envelopes) >= max_messages:
                break
            if stored.available_at > now:
                continue

            stored.delivery_count += 1
            stored.lease += 1
            stored.available_at = now + self.visibility_timeout_seconds
            envelopes.append(
                InMemoryEnvelope(
                    queue=self,
                    message_id=stored.id,
                    body=copy.deepcopy(stored.body),
                    delivery_count=stored.delivery_count,
                    lease=stored.lease,
                )
            )

        return envelopes

    # =========================================================================
    # SETTLEMENT
    # =========================================================================

    def _current(self, message_id: str, lease: int) -> _StoredMessage:
        stored = self._messages.get(message_id)
        if stored is None or stored.lease != lease:
            raise MessageSettlementError(f"Lease lost for message {message_id}")
        return stored

    def _ack(self, message_id: str, lease: int) -> None:
        self._current(message_id, lease)
        del self._messages[message_id]
        self.acked_count += 1

    def _redeliver(self, message_id: str, lease: int, body: Dict[str, Any]) -> None:
        stored = self._current(message_id, lease)
        stored.body = copy.deepcopy(body)
        stored.available_at = self._clock()
        self.redelivered_count += 1

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def pending_count(self) -> int:
        """Messages receivable right now."""
        now = self._clock()
        return sum(1 for m in self._messages.values() if m.available_at <= now)

    @property
    def in_flight_count(self) -> int:
        """Delivered messages still hidden by their visibility timeout."""
        now = self._clock()
        return sum(
            1 for m in self._messages.values()
            if m.delivery_count > 0 and m.available_at > now
        )

    def peek_bodies(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(m.body) for m in self._messages.values()]


class InMemoryDeadLetterSink(DeadLetterSink):
    """Collects dead-letter records; set fail_with to simulate an outage."""

    def __init__(self, name: str = "screenshot-dlq"):
        self.name = name
        self.records: List[DeadLetterRecord] = []
        self.fail_with: Optional[BaseException] = None

    async def send(self, record: DeadLetterRecord) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.records.append(record)


__all__ = [
    "MessageSettlementError",
    "InMemoryEnvelope",
    "InMemoryQueue",
    "InMemoryDeadLetterSink",
]
