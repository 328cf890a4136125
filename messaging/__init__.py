# ============================================================================
# MESSAGING MODULE
# ============================================================================
# STATUS: Core - Queue transports and job submission
# PURPOSE: Enqueue jobs, deliver batches, persist dead letters
# CREATED: 18 OCT 2026
# ============================================================================
"""
Messaging Module

Transport contracts, the in-memory and Azure Service Bus transports, and
the job producer.

Usage:
    from messaging import JobProducer, InMemoryQueue

    queue = InMemoryQueue()
    producer = JobProducer(queue)
    job_id = await producer.submit(params)
"""

from .config import MessagingConfig
from .transport import (
    SendOptions,
    content_dedup_key,
    QueueTransport,
    MessageEnvelope,
    BatchSource,
    DeadLetterSink,
)
from .memory import (
    MessageSettlementError,
    InMemoryQueue,
    InMemoryDeadLetterSink,
)
from .producer import (
    JobProducer,
    generate_job_id,
    create_deduplication_key,
    create_job_message,
)

__all__ = [
    "MessagingConfig",
    "SendOptions",
    "content_dedup_key",
    "QueueTransport",
    "MessageEnvelope",
    "BatchSource",
    "DeadLetterSink",
    "MessageSettlementError",
    "InMemoryQueue",
    "InMemoryDeadLetterSink",
    "JobProducer",
    "generate_job_id",
    "create_deduplication_key",
    "create_job_message",
]
