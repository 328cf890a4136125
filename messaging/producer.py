# ============================================================================
# JOB PRODUCER
# ============================================================================
# STATUS: Core - Screenshot job submission
# PURPOSE: Build JobMessages and hand them to the queue transport
# CREATED: 18 OCT 2026
# ============================================================================
"""
Job Producer

Builds well-formed JobMessages and enqueues them with one of four
submission policies: plain, priority, delayed, deduplicated.

The producer never retries. A failed send is a submission-time failure
surfaced to the caller as SubmissionError; once a message is in the queue,
retries belong to the consumer.

Usage:
    producer = JobProducer(transport)
    job_id = await producer.submit(JobParameters(...))
"""

import asyncio
import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from core.config import QueueDefaults
from core.errors import BatchSubmissionError, SubmissionError
from core.logging import log_checkpoint
from core.models import JobConfig, JobMessage, JobMetadata, JobParameters
from messaging.transport import QueueTransport, SendOptions

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


# ============================================================================
# HELPERS
# ============================================================================

def generate_job_id() -> str:
    """Generate a unique job ID: screenshot_<epoch_ms>_<9 base36 chars>."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"screenshot_{int(time.time() * 1000)}_{suffix}"


def create_deduplication_key(
    project_id: str,
    plan_id: str,
    user_id: str,
    prefix: str = "screenshot",
) -> str:
    """
    Key that collapses equivalent submissions.

    Derived from the logical target and submitter, never from job_id.
    """
    return f"{prefix}:{project_id}:{plan_id}:{user_id}"


def create_job_message(
    job_id: str,
    params: JobParameters,
    config: Optional[JobConfig] = None,
    defaults: Optional[QueueDefaults] = None,
    now: Optional[datetime] = None,
) -> JobMessage:
    """Create a fresh JobMessage (retry_count=0, default priority)."""
    defaults = defaults or QueueDefaults()
    return JobMessage(
        metadata=JobMetadata(
            job_id=job_id,
            created_at=now or datetime.now(timezone.utc),
            submitter_user_id=params.user_id,
            organization_id=params.org_id,
            schema_version=defaults.schema_version,
            priority=defaults.priorities.default,
            retry_count=0,
        ),
        params=params,
        config=config or JobConfig(timeout_ms=defaults.timeout_ms),
    )


# ============================================================================
# PRODUCER
# ============================================================================

class JobProducer:
    """Submits screenshot jobs to the queue."""

    def __init__(
        self,
        transport: QueueTransport,
        defaults: Optional[QueueDefaults] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize producer.

        Args:
            transport: Queue transport to send through
            defaults: Policy defaults (priority, timeout, schema version)
            clock: Returns the creation timestamp for new messages
            id_factory: Returns new job IDs
        """
        self.transport = transport
        self.defaults = defaults or QueueDefaults()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or generate_job_id

    def _new_message(
        self,
        params: JobParameters,
        config: Optional[JobConfig] = None,
    ) -> JobMessage:
        return create_job_message(
            self._id_factory(),
            params,
            config=config,
            defaults=self.defaults,
            now=self._clock(),
        )

    async def send(self, message: JobMessage, options: Optional[SendOptions] = None) -> None:
        """
        Send one message through the transport.

        Raises:
            SubmissionError: If the transport send fails
        """
        options = options or SendOptions()
        try:
            await self.transport.send(message, options)
        except Exception as e:
            logger.error(
                f"Failed to send job {message.job_id} to {self.transport.name}: {e}"
            )
            raise SubmissionError(
                f"Failed to send message to screenshot queue: {e}",
                body=message.to_queue_body(),
                options=options.to_dict(),
                original_error=e,
            ) from e

        log_checkpoint(
            "job_submitted",
            {
                "job_id": message.job_id,
                "priority": message.metadata.priority,
                "delay_seconds": options.delay_seconds,
                "deduplication_id": options.deduplication_id,
            },
        )

    # =========================================================================
    # SUBMISSION POLICIES
    # =========================================================================

    async def submit(
        self,
        params: JobParameters,
        config: Optional[JobConfig] = None,
    ) -> str:
        """Enqueue a job with default priority and no delay. Returns its job_id."""
        message = self._new_message(params, config)
        await self.send(message)
        return message.job_id

    async def submit_with_priority(
        self,
        params: JobParameters,
        config: Optional[JobConfig] = None,
    ) -> str:
        """
        Enqueue a job marked urgent.

        Priority only means "no artificial delay"; it does not reorder
        messages already queued.
        """
        message = self._new_message(params, config)
        message = message.model_copy(
            update={
                "metadata": message.metadata.model_copy(
                    update={"priority": self.defaults.priorities.urgent}
                )
            }
        )
        await self.send(message, SendOptions(delay_seconds=0))
        return message.job_id

    async def submit_delayed(
        self,
        params: JobParameters,
        delay_seconds: int,
        config: Optional[JobConfig] = None,
    ) -> str:
        """Enqueue a job that must not be delivered before delay_seconds."""
        if delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {delay_seconds}")

        message = self._new_message(params, config)
        await self.send(message, SendOptions(delay_seconds=delay_seconds))
        return message.job_id

    async def submit_deduplicated(
        self,
        params: JobParameters,
        dedup_key: Optional[str] = None,
        config: Optional[JobConfig] = None,
    ) -> str:
        """
        Enqueue a job with a deduplication key.

        If a message with the same key is in flight within the transport's
        dedup window, this submission is silently absorbed and never runs.
        The returned job_id is always the newly minted one, so it may not
        correspond to an executed job; callers that poll for status should
        key on the deduplication key, not the job_id.

        Args:
            params: Screenshot parameters
            dedup_key: Explicit key; defaults to create_deduplication_key(params)
            config: Optional execution config
        """
        key = dedup_key or create_deduplication_key(
            params.project_id,
            params.plan_id,
            params.user_id,
            prefix=self.defaults.dedup_key_prefix,
        )
        message = self._new_message(params, config)
        await self.send(
            message,
            SendOptions(deduplication_id=key, content_based_deduplication=False),
        )
        return message.job_id

    async def submit_batch(self, messages: Sequence[JobMessage]) -> None:
        """
        Send several independent messages.

        Every send is attempted even if others fail.

        Raises:
            BatchSubmissionError: If any send failed, listing each failed job
        """
        if not messages:
            return

        results = await asyncio.gather(
            *(self.transport.send(message, SendOptions()) for message in messages),
            return_exceptions=True,
        )

        failures: List[Tuple[str, BaseException]] = [
            (message.job_id, result)
            for message, result in zip(messages, results)
            if isinstance(result, BaseException)
        ]

        if failures:
            logger.error(
                f"Batch send to {self.transport.name}: "
                f"{len(failures)}/{len(messages)} messages failed"
            )
            raise BatchSubmissionError(failures, total=len(messages))

        logger.info(f"Dispatched batch of {len(messages)} messages to {self.transport.name}")

    async def submit_request(
        self,
        params: JobParameters,
        *,
        priority: bool = False,
        delay_seconds: Optional[int] = None,
        deduplicate: bool = False,
        config: Optional[JobConfig] = None,
    ) -> str:
        """
        Submit with the policy selected by flags.

        Precedence: priority, then deduplicate, then delay, then plain.
        """
        if priority:
            return await self.submit_with_priority(params, config)
        if deduplicate:
            return await self.submit_deduplicated(params, config=config)
        if delay_seconds:
            return await self.submit_delayed(params, delay_seconds, config)
        return await self.submit(params, config)


__all__ = [
    "generate_job_id",
    "create_deduplication_key",
    "create_job_message",
    "JobProducer",
]
