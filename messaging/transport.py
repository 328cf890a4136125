# ============================================================================
# QUEUE TRANSPORT CONTRACTS
# ============================================================================
# STATUS: Core - Abstract transport interfaces
# PURPOSE: Contracts between producer/consumer and a concrete queue
# CREATED: 18 OCT 2026
# ============================================================================
"""
Queue Transport Contracts

Three seams separate the job queue logic from any concrete broker:

- QueueTransport: enqueue side, used by the producer
- MessageEnvelope: one delivered message, settled by the consumer with
  ack() or retry(body); if neither is called the transport's visibility
  timeout makes the message deliverable again
- DeadLetterSink: terminal storage for failed jobs (fallible)

Implementations:
- messaging.memory: in-process queue for tests and local runs
- messaging.service_bus: Azure Service Bus
"""

import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from core.models import DeadLetterRecord, JobMessage


@dataclass(frozen=True)
class SendOptions:
    """Per-send transport options."""
    delay_seconds: Optional[int] = None
    deduplication_id: Optional[str] = None
    content_based_deduplication: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def content_dedup_key(body: Dict[str, Any]) -> str:
    """
    Deduplication key for content_based_deduplication.

    Hashes only the job params, so two submissions of the same target
    collide even though each carries its own job_id and created_at.
    """
    params = json.dumps(body.get("params"), sort_keys=True, default=str)
    return hashlib.sha256(params.encode("utf-8")).hexdigest()


class QueueTransport(ABC):
    """Enqueue interface."""

    name: str

    @abstractmethod
    async def send(self, message: JobMessage, options: Optional[SendOptions] = None) -> None:
        """
        Enqueue a message.

        Raises:
            Exception: Any transport failure; the producer wraps it
        """
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass


class MessageEnvelope(ABC):
    """
    A delivered message.

    body is the raw JSON object as delivered; delivery_count is
    informational only and never drives retry decisions.
    """

    id: str
    body: Dict[str, Any]
    delivery_count: int

    @abstractmethod
    async def ack(self) -> None:
        """Remove the message from the queue permanently."""
        pass

    @abstractmethod
    async def retry(self, body: Dict[str, Any]) -> None:
        """Redeliver the message carrying the updated body."""
        pass


class BatchSource(ABC):
    """Batch delivery interface."""

    @abstractmethod
    async def receive_batch(
        self,
        max_messages: int,
        max_wait_time: Optional[float] = None,
    ) -> List[MessageEnvelope]:
        pass

    async def close(self) -> None:
        pass


class DeadLetterSink(ABC):
    """Terminal storage for failed jobs."""

    @abstractmethod
    async def send(self, record: DeadLetterRecord) -> None:
        """
        Persist a dead-letter record.

        Raises:
            Exception: The sink is fallible; callers must not assume success
        """
        pass

    async def close(self) -> None:
        pass


__all__ = [
    "SendOptions",
    "content_dedup_key",
    "QueueTransport",
    "MessageEnvelope",
    "BatchSource",
    "DeadLetterSink",
]
