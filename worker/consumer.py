# ============================================================================
# BATCH CONSUMER
# ============================================================================
# STATUS: Core - Queue batch processing
# PURPOSE: Execute delivered jobs and settle each message exactly once
# CREATED: 18 OCT 2026
# ============================================================================
"""
Batch Consumer

Processes batches delivered by a BatchSource. For every message, strictly
in delivery order:

    1. parse and validate the body
         invalid -> dead-letter (invalid_payload), ack. No retry consumed.
    2. execute through the ExecutionAdapter
         raised exception and non-COMPLETED status are the same failure
    3. success -> ack
    4. failure, retry_count < max_retries -> retry with next_attempt(...)
    5. failure, retries exhausted -> dead-letter (max_retries_exceeded), ack
         dead-letter send failed -> leave unsettled; the visibility timeout
         redelivers it with retry_count unchanged

One message's failure never stops the rest of the batch. retry_count in the
body is the only input to the retry decision; the broker's delivery count is
informational.

Also provides QueueWorker, the receive loop used by the worker process, and
run_worker() which wires it to Azure Service Bus.
"""

import asyncio
import signal
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Sequence

from core.config import MAX_RETRIES
from core.contracts import DLQReason, FailureAction, ScreenshotStatus, Settlement
from core.errors import DeadLetterSendError, JobValidationError
from core.logging import ComponentType, get_logger, log_checkpoint, log_context
from core.models import (
    BatchProcessingResult,
    BatchSummary,
    DeadLetterRecord,
    JobMessage,
    next_attempt,
)
from messaging.config import MessagingConfig
from messaging.service_bus import ServiceBusBatchSource, ServiceBusDeadLetterSink
from messaging.transport import BatchSource, DeadLetterSink, MessageEnvelope
from worker.adapter import HTTPExecutionAdapter
from worker.contracts import ExecutionAdapter, WorkerConfig

logger = get_logger(__name__, component=ComponentType.CONSUMER)


# ============================================================================
# POLICY
# ============================================================================

def decide_failure_action(
    retry_count: int,
    max_retries: int = MAX_RETRIES,
    terminal: bool = False,
) -> FailureAction:
    """
    Decide what happens to a failed delivery.

    Args:
        retry_count: retry_count carried in the message body
        max_retries: Retries allowed after the first attempt
        terminal: True for failures that can never succeed (invalid payload)
    """
    if terminal or retry_count >= max_retries:
        return FailureAction.DEAD_LETTER
    return FailureAction.RETRY


def _job_id_of(body: Any) -> str:
    """Best-effort job_id for bodies that may not parse."""
    if isinstance(body, Mapping):
        metadata = body.get("metadata")
        if isinstance(metadata, Mapping) and metadata.get("job_id"):
            return str(metadata["job_id"])
    return "unknown"


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


# ============================================================================
# CONSUMER
# ============================================================================

class BatchConsumer:
    """
    Executes and settles delivered batches.

    The consumer is stateless between batches apart from its stats counters;
    all retry state lives in the message bodies.
    """

    def __init__(
        self,
        adapter: ExecutionAdapter,
        dead_letter_sink: DeadLetterSink,
        queue_name: str = "screenshot-queue",
        max_retries: int = MAX_RETRIES,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize consumer.

        Args:
            adapter: Screenshot execution backend
            dead_letter_sink: Where terminal failures are recorded
            queue_name: Source queue, recorded on dead-letter records
            max_retries: Retries allowed after the first attempt
            clock: Returns "now" for retry_history and dead-letter timestamps
        """
        self.adapter = adapter
        self.dead_letter_sink = dead_letter_sink
        self.queue_name = queue_name
        self.max_retries = max_retries
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # Stats
        self.batches_processed = 0
        self.messages_processed = 0
        self.jobs_completed = 0
        self.jobs_retried = 0
        self.jobs_dead_lettered = 0
        self.jobs_unsettled = 0

    def stats(self) -> dict:
        return {
            "batches_processed": self.batches_processed,
            "messages_processed": self.messages_processed,
            "jobs_completed": self.jobs_completed,
            "jobs_retried": self.jobs_retried,
            "jobs_dead_lettered": self.jobs_dead_lettered,
            "jobs_unsettled": self.jobs_unsettled,
        }

    async def handle_batch(self, envelopes: Sequence[MessageEnvelope]) -> BatchSummary:
        """
        Process one delivered batch, sequentially.

        Returns:
            BatchSummary with one result per envelope, in delivery order
        """
        batch_id = uuid.uuid4().hex
        started = time.monotonic()
        results: List[BatchProcessingResult] = []

        with log_context(batch_id=batch_id, queue_name=self.queue_name):
            logger.info(f"Processing batch of {len(envelopes)} messages")

            for envelope in envelopes:
                message_started = time.monotonic()
                with log_context(message_id=envelope.id):
                    try:
                        result = await self._process_message(envelope)
                    except Exception as e:
                        logger.exception(f"Unhandled error processing message {envelope.id}: {e}")
                        result = await self._recover(envelope, e)

                result = result.model_copy(update={"duration_ms": _elapsed_ms(message_started)})
                self._count(result)
                results.append(result)

            summary = BatchSummary.from_results(batch_id, results, _elapsed_ms(started))
            self.batches_processed += 1

            log_checkpoint(
                "batch_completed",
                {
                    "message_count": len(results),
                    "success_rate": summary.success_rate,
                    "failure_count": summary.failure_count,
                    "retried_count": summary.retried_count,
                    "dead_lettered_count": summary.dead_lettered_count,
                    "total_duration_ms": summary.total_duration_ms,
                },
            )

        return summary

    def _count(self, result: BatchProcessingResult) -> None:
        self.messages_processed += 1
        if result.settlement == Settlement.ACKED:
            self.jobs_completed += 1
        elif result.settlement == Settlement.RETRIED:
            self.jobs_retried += 1
        elif result.settlement == Settlement.DEAD_LETTERED:
            self.jobs_dead_lettered += 1
        else:
            self.jobs_unsettled += 1

    # =========================================================================
    # PER-MESSAGE PROCESSING
    # =========================================================================

    async def _process_message(self, envelope: MessageEnvelope) -> BatchProcessingResult:
        body = envelope.body

        try:
            message = JobMessage.from_queue_body(body)
            params = message.params.to_execution_params()
        except JobValidationError as e:
            logger.warning(f"Invalid payload in message {envelope.id}: {e.message}")
            settlement = await self._dead_letter(
                envelope, body, DLQReason.INVALID_PAYLOAD, e.message
            )
            return BatchProcessingResult(
                message_id=envelope.id,
                job_id=_job_id_of(body),
                success=False,
                status=ScreenshotStatus.FAILED,
                error=e.message,
                settlement=settlement,
            )

        with log_context(job_id=message.job_id):
            logger.info(
                f"Executing job {message.job_id} (retry_count={message.retry_count}, "
                f"delivery_count={envelope.delivery_count})"
            )

            try:
                outcome = await self.adapter.execute(message.job_id, params, message.config)
            except Exception as e:
                logger.warning(f"Job {message.job_id} failed: {e}")
                status = ScreenshotStatus.FAILED
                error = str(e) or type(e).__name__
            else:
                if outcome.succeeded:
                    await envelope.ack()
                    log_checkpoint("job_acked", {"artifact_url": outcome.artifact_url})
                    return BatchProcessingResult(
                        message_id=envelope.id,
                        job_id=message.job_id,
                        success=True,
                        status=outcome.status,
                        artifact_url=outcome.artifact_url,
                        settlement=Settlement.ACKED,
                    )

                status = outcome.status
                error = outcome.error or f"Screenshot ended with status {outcome.status.value}"
                logger.warning(f"Job {message.job_id} failed: {error}")

            settlement = await self._handle_failure(envelope, message, error)

        return BatchProcessingResult(
            message_id=envelope.id,
            job_id=message.job_id,
            success=False,
            status=status,
            error=error,
            settlement=settlement,
        )

    async def _handle_failure(
        self,
        envelope: MessageEnvelope,
        message: JobMessage,
        error: str,
    ) -> Settlement:
        """Retry or dead-letter a failed execution."""
        action = decide_failure_action(message.retry_count, self.max_retries)

        if action == FailureAction.RETRY:
            updated = next_attempt(message, error, now=self._clock())
            await envelope.retry(updated.to_queue_body())
            log_checkpoint(
                "job_retried",
                {"retry_count": updated.retry_count, "max_retries": self.max_retries},
            )
            return Settlement.RETRIED

        logger.warning(
            f"Job {message.job_id} exhausted {self.max_retries} retries, dead-lettering"
        )
        return await self._dead_letter(
            envelope, envelope.body, DLQReason.MAX_RETRIES_EXCEEDED, error
        )

    async def _dead_letter(
        self,
        envelope: MessageEnvelope,
        body: Any,
        reason: DLQReason,
        error: str,
    ) -> Settlement:
        """
        Record a terminal failure, then ack.

        If the sink rejects the record the message is left unsettled so it
        is not lost. A failed ack after the record is written also leaves it
        unsettled; redelivery dead-letters it again rather than retrying it.
        """
        record = DeadLetterRecord.for_message(
            body if isinstance(body, Mapping) else {},
            reason,
            self.queue_name,
            error,
            now=self._clock(),
        )

        try:
            await self.dead_letter_sink.send(record)
        except Exception as e:
            failure = DeadLetterSendError(record.job_id or envelope.id, e)
            logger.error(f"{failure.message}; leaving message {envelope.id} unsettled")
            return Settlement.UNSETTLED

        try:
            await envelope.ack()
        except Exception as e:
            logger.error(
                f"Dead-letter record written but ack failed for message {envelope.id}: {e}; "
                f"leaving it unsettled"
            )
            return Settlement.UNSETTLED

        log_checkpoint(
            "job_dead_lettered",
            {
                "dlq_reason": reason.value,
                "total_retries": record.total_retries,
                "final_error": error[:500],
            },
        )
        return Settlement.DEAD_LETTERED

    async def _recover(self, envelope: MessageEnvelope, error: BaseException) -> BatchProcessingResult:
        """Route a message whose processing raised through the failure policy."""
        message_error = str(error) or type(error).__name__
        body = envelope.body

        try:
            try:
                message = JobMessage.from_queue_body(body)
                message.params.to_execution_params()
            except JobValidationError as e:
                settlement = await self._dead_letter(
                    envelope, body, DLQReason.INVALID_PAYLOAD, e.message
                )
            else:
                settlement = await self._handle_failure(envelope, message, message_error)
        except Exception as e:
            logger.error(f"Could not settle message {envelope.id}: {e}")
            settlement = Settlement.UNSETTLED

        return BatchProcessingResult(
            message_id=envelope.id,
            job_id=_job_id_of(body),
            success=False,
            status=ScreenshotStatus.FAILED,
            error=message_error,
            settlement=settlement,
        )


# ============================================================================
# RECEIVE LOOP
# ============================================================================

class QueueWorker:
    """
    Receives batches from a BatchSource and hands them to a BatchConsumer.

    Runs until stop() is called.
    """

    def __init__(
        self,
        source: BatchSource,
        consumer: BatchConsumer,
        max_batch_size: int = 10,
        max_wait_time_seconds: float = 5.0,
        idle_sleep_seconds: float = 0.5,
        error_sleep_seconds: float = 1.0,
    ):
        self.source = source
        self.consumer = consumer
        self.max_batch_size = max_batch_size
        self.max_wait_time_seconds = max_wait_time_seconds
        self.idle_sleep_seconds = idle_sleep_seconds
        self.error_sleep_seconds = error_sleep_seconds

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()
        self.last_summary: Optional[BatchSummary] = None

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, max_batches: Optional[int] = None) -> None:
        """
        Run the receive loop.

        Args:
            max_batches: Stop after this many non-empty batches (None = forever)
        """
        self._running = True
        self._shutdown_event.clear()
        handled = 0
        logger.info(f"Worker loop started on {self.consumer.queue_name}")

        try:
            while self._running:
                try:
                    envelopes = await self.source.receive_batch(
                        self.max_batch_size, self.max_wait_time_seconds
                    )
                except Exception as e:
                    logger.exception(f"Error in receive loop: {e}")
                    await self._pause(self.error_sleep_seconds)
                    continue

                if not envelopes:
                    await self._pause(self.idle_sleep_seconds)
                    continue

                self.last_summary = await self.consumer.handle_batch(envelopes)
                handled += 1
                if max_batches is not None and handled >= max_batches:
                    break
        finally:
            self._running = False
            logger.info(f"Worker loop stopped. Stats: {self.consumer.stats()}")

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        """Request shutdown; the batch in progress is finished first."""
        if self._running:
            logger.info("Stopping worker loop...")
        self._running = False
        self._shutdown_event.set()

    async def close(self) -> None:
        """Close the source, the dead-letter sink and the adapter."""
        await self.source.close()
        await self.consumer.dead_letter_sink.close()
        await self.consumer.adapter.close()


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def create_worker(
    config: WorkerConfig,
    messaging_config: Optional[MessagingConfig] = None,
) -> QueueWorker:
    """
    Wire a QueueWorker to Azure Service Bus and the HTTP renderer.

    Raises:
        ValueError: If no renderer URL or Service Bus connection is configured
    """
    if not config.renderer_url:
        raise ValueError("SCREENSHOT_RENDERER_URL required")

    messaging_config = messaging_config or MessagingConfig.from_env()

    source = ServiceBusBatchSource(messaging_config, queue_name=config.queue_name)
    sink = ServiceBusDeadLetterSink(
        messaging_config, queue_name=config.dead_letter_queue_name
    )
    adapter = HTTPExecutionAdapter(config.renderer_url, api_key=config.renderer_api_key)
    consumer = BatchConsumer(
        adapter,
        sink,
        queue_name=config.queue_name,
        max_retries=config.max_retries,
    )
    return QueueWorker(
        source,
        consumer,
        max_batch_size=config.max_batch_size,
        max_wait_time_seconds=config.max_wait_time_seconds,
    )


async def run_worker(
    config: Optional[WorkerConfig] = None,
    worker: Optional[QueueWorker] = None,
) -> None:
    """
    Run a worker until SIGTERM/SIGINT.

    Args:
        config: Worker configuration (uses env vars if not provided)
        worker: Pre-built worker (built from config if not provided)
    """
    config = config or WorkerConfig.from_env()
    worker = worker or create_worker(config)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def shutdown_handler():
        logger.info("Shutdown signal received")
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    finally:
        try:
            await asyncio.wait_for(worker.close(), timeout=config.shutdown_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Shutdown timeout - connections not closed cleanly")


__all__ = [
    "decide_failure_action",
    "BatchConsumer",
    "QueueWorker",
    "create_worker",
    "run_worker",
]
