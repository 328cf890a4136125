# ============================================================================
# SERVICE BUS TRANSPORT
# ============================================================================
# STATUS: Messaging - Azure Service Bus queue, envelope and dead-letter sink
# PURPOSE: Run the job queue on Azure Service Bus
# CREATED: 18 OCT 2026
# ============================================================================
"""
Service Bus Transport

Azure Service Bus implementation of the transport contracts.

Mapping:
    delay_seconds          -> scheduled_enqueue_time_utc
    deduplication_id       -> message_id (queue must have duplicate detection)
    ack()                  -> complete_message
    retry(body)            -> send updated body, then complete the original
    dead-letter sink       -> send DeadLetterRecord to the dead-letter queue

Service Bus cannot rewrite the body of a locked message, so redelivery with
an incremented retry_count is a send of the updated body followed by
completion of the original. A crash between the two leaves both copies in
the queue (a duplicate attempt), never zero.

Error categorization (from the SDK exception types):
    permanent: auth, message too large, entity not found, quota exceeded
    transient: timeouts, server busy, connection/communication errors
The SDK's own retry policy handles transient errors; anything that still
fails surfaces as ServiceBusSendError.
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from azure.servicebus import ServiceBusMessage, ServiceBusReceivedMessage
from azure.servicebus.aio import ServiceBusClient, ServiceBusReceiver, ServiceBusSender
from azure.servicebus.exceptions import (
    MessageSizeExceededError,
    MessagingEntityNotFoundError,
    OperationTimeoutError,
    ServiceBusAuthenticationError,
    ServiceBusAuthorizationError,
    ServiceBusCommunicationError,
    ServiceBusConnectionError,
    ServiceBusError,
    ServiceBusQuotaExceededError,
    ServiceBusServerBusyError,
)

from core.models import DeadLetterRecord, JobMessage
from messaging.config import MessagingConfig
from messaging.transport import (
    BatchSource,
    DeadLetterSink,
    MessageEnvelope,
    QueueTransport,
    SendOptions,
    content_dedup_key,
)

logger = logging.getLogger(__name__)


PERMANENT_ERRORS = (
    ServiceBusAuthenticationError,
    ServiceBusAuthorizationError,
    MessageSizeExceededError,
    MessagingEntityNotFoundError,
    ServiceBusQuotaExceededError,
)

TRANSIENT_ERRORS = (
    OperationTimeoutError,
    ServiceBusServerBusyError,
    ServiceBusConnectionError,
    ServiceBusCommunicationError,
)


class ServiceBusSendError(RuntimeError):
    """Raised when a send to Service Bus fails."""

    def __init__(self, message: str, queue_name: str, transient: bool):
        super().__init__(message)
        self.queue_name = queue_name
        self.transient = transient


def is_transient_error(error: BaseException) -> bool:
    """Transient errors may succeed if the whole operation is retried later."""
    if isinstance(error, PERMANENT_ERRORS):
        return False
    return isinstance(error, TRANSIENT_ERRORS) or isinstance(error, ServiceBusError)


def build_service_bus_message(
    body: Dict[str, Any],
    message_id: str,
    delay_seconds: Optional[int] = None,
    subject: str = "screenshot",
    application_properties: Optional[Dict[str, Any]] = None,
) -> ServiceBusMessage:
    """Build a JSON ServiceBusMessage, scheduling it when delay_seconds > 0."""
    sb_message = ServiceBusMessage(
        body=json.dumps(body, default=str),
        message_id=message_id,
        content_type="application/json",
        subject=subject,
        application_properties=application_properties or {},
    )
    if delay_seconds and delay_seconds > 0:
        sb_message.scheduled_enqueue_time_utc = (
            datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        )
    return sb_message


def dead_letter_message_id(record: DeadLetterRecord, body: Dict[str, Any]) -> str:
    """
    Message id for a dead-letter record.

    Records for a known job collapse per attempt count. Unparseable bodies
    have no job_id, so their id is a hash of the whole record, which keeps
    distinct poison messages distinct under duplicate detection.
    """
    if record.job_id:
        return f"{record.job_id}-dlq-{record.total_retries}"
    digest = hashlib.sha256(json.dumps(body, sort_keys=True, default=str).encode("utf-8"))
    return f"unparsed-dlq-{digest.hexdigest()[:32]}"


def _job_properties(body: Dict[str, Any]) -> Dict[str, Any]:
    metadata = body.get("metadata") or {}
    return {
        "job_id": str(metadata.get("job_id", "")),
        "priority": int(metadata.get("priority", 0) or 0),
        "retry_count": int(metadata.get("retry_count", 0) or 0),
    }


async def _send(
    sender: ServiceBusSender,
    queue_name: str,
    sb_message: ServiceBusMessage,
    timeout: Optional[float] = None,
) -> None:
    try:
        await sender.send_messages(sb_message, timeout=timeout)
    except PERMANENT_ERRORS as e:
        logger.error(f"Permanent send failure on {queue_name}: {type(e).__name__}: {e}")
        raise ServiceBusSendError(
            f"Service Bus rejected message for '{queue_name}': {e}",
            queue_name=queue_name,
            transient=False,
        ) from e
    except ServiceBusError as e:
        logger.warning(f"Send to {queue_name} failed after SDK retries: {type(e).__name__}")
        raise ServiceBusSendError(
            f"Failed to send to '{queue_name}': {e}",
            queue_name=queue_name,
            transient=is_transient_error(e),
        ) from e


# ============================================================================
# CONNECTION
# ============================================================================

class _ServiceBusConnection:
    """Owns an async ServiceBusClient built from MessagingConfig."""

    def __init__(self, config: MessagingConfig, client: Optional[ServiceBusClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._credential = None

    async def _get_client(self) -> ServiceBusClient:
        if self._client is not None:
            return self._client

        if self.config.use_managed_identity:
            from azure.identity.aio import DefaultAzureCredential, ManagedIdentityCredential

            if self.config.managed_identity_client_id:
                self._credential = ManagedIdentityCredential(
                    client_id=self.config.managed_identity_client_id
                )
            else:
                self._credential = DefaultAzureCredential()

            self._client = ServiceBusClient(
                fully_qualified_namespace=self.config.fully_qualified_namespace,
                credential=self._credential,
                retry_total=5,
                retry_backoff_factor=0.5,
                retry_backoff_max=60,
                retry_mode="exponential",
            )
            logger.info(
                f"Connecting to Service Bus via managed identity: "
                f"{self.config.fully_qualified_namespace}"
            )
        else:
            self._client = ServiceBusClient.from_connection_string(
                self.config.connection_string,
                retry_total=5,
                retry_backoff_factor=0.5,
                retry_backoff_max=60,
                retry_mode="exponential",
            )
            logger.info("Connecting to Service Bus via connection string")

        return self._client

    async def _close_client(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None


# ============================================================================
# QUEUE TRANSPORT (send side)
# ============================================================================

class ServiceBusQueueTransport(_ServiceBusConnection, QueueTransport):
    """Sends job messages to a Service Bus queue."""

    def __init__(
        self,
        config: MessagingConfig,
        queue_name: Optional[str] = None,
        client: Optional[ServiceBusClient] = None,
    ):
        super().__init__(config, client)
        self.name = queue_name or config.queue_name
        self._sender: Optional[ServiceBusSender] = None

    async def connect(self) -> None:
        if self._sender is not None:
            return
        client = await self._get_client()
        self._sender = client.get_queue_sender(queue_name=self.name)
        logger.info(f"Connected to Service Bus queue: {self.name}")

    async def send(self, message: JobMessage, options: Optional[SendOptions] = None) -> None:
        options = options or SendOptions()
        if self._sender is None:
            await self.connect()

        body = message.to_queue_body()
        if options.deduplication_id:
            message_id = options.deduplication_id
        elif options.content_based_deduplication:
            message_id = content_dedup_key(body)
        else:
            message_id = message.job_id

        sb_message = build_service_bus_message(
            body,
            message_id=message_id,
            delay_seconds=options.delay_seconds,
            application_properties=_job_properties(body),
        )
        await _send(self._sender, self.name, sb_message, timeout=self.config.send_timeout_seconds)
        logger.info(
            f"Message sent to {self.name}: {message_id}",
            extra={"queue": self.name, "job_id": message.job_id, "message_id": message_id},
        )

    async def close(self) -> None:
        if self._sender is not None:
            await self._sender.close()
            self._sender = None
        await self._close_client()

    async def __aenter__(self) -> "ServiceBusQueueTransport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# ============================================================================
# ENVELOPE + BATCH SOURCE (receive side)
# ============================================================================

def decode_body(raw: ServiceBusReceivedMessage) -> Dict[str, Any]:
    """
    Decode a received message body.

    Bodies that are not a JSON object are wrapped as {"raw_body": text} so the
    consumer can dead-letter them as invalid_payload with the original text.
    """
    text = str(raw)
    try:
        data = json.loads(text)
    except ValueError:
        return {"raw_body": text}
    if not isinstance(data, dict):
        return {"raw_body": text}
    return data


class ServiceBusEnvelope(MessageEnvelope):
    """A message received from Service Bus under a peek-lock."""

    def __init__(
        self,
        raw: ServiceBusReceivedMessage,
        receiver: ServiceBusReceiver,
        sender: ServiceBusSender,
        queue_name: str,
        send_timeout: Optional[float] = None,
    ):
        self.raw = raw
        self.id = str(raw.message_id)
        self.body = decode_body(raw)
        self.delivery_count = raw.delivery_count or 0
        self._receiver = receiver
        self._sender = sender
        self._queue_name = queue_name
        self._send_timeout = send_timeout

    async def ack(self) -> None:
        await self._receiver.complete_message(self.raw)
        logger.debug(f"Completed message: {self.id}")

    async def retry(self, body: Dict[str, Any]) -> None:
        properties = _job_properties(body)
        sb_message = build_service_bus_message(
            body,
            message_id=f"{properties['job_id'] or self.id}-r{properties['retry_count']}",
            application_properties=properties,
        )
        await _send(self._sender, self._queue_name, sb_message, timeout=self._send_timeout)
        await self._receiver.complete_message(self.raw)
        logger.debug(f"Redelivered message {self.id} as retry {properties['retry_count']}")


class ServiceBusBatchSource(_ServiceBusConnection, BatchSource):
    """Receives batches of job messages from a Service Bus queue."""

    def __init__(
        self,
        config: MessagingConfig,
        queue_name: Optional[str] = None,
        client: Optional[ServiceBusClient] = None,
    ):
        super().__init__(config, client)
        self.queue_name = queue_name or config.queue_name
        self._receiver: Optional[ServiceBusReceiver] = None
        self._sender: Optional[ServiceBusSender] = None

    async def connect(self) -> None:
        if self._receiver is not None:
            return
        client = await self._get_client()
        self._receiver = client.get_queue_receiver(
            queue_name=self.queue_name,
            max_wait_time=self.config.receive_timeout_seconds,
        )
        self._sender = client.get_queue_sender(queue_name=self.queue_name)
        logger.info(f"Consumer connected to queue: {self.queue_name}")

    async def receive_batch(
        self,
        max_messages: int = 10,
        max_wait_time: Optional[float] = None,
    ) -> List[MessageEnvelope]:
        if self._receiver is None:
            await self.connect()

        messages = await self._receiver.receive_messages(
            max_message_count=max_messages,
            max_wait_time=max_wait_time or self.config.receive_timeout_seconds,
        )
        return [
            ServiceBusEnvelope(
                raw,
                self._receiver,
                self._sender,
                self.queue_name,
                send_timeout=self.config.send_timeout_seconds,
            )
            for raw in messages
        ]

    async def close(self) -> None:
        if self._receiver is not None:
            await self._receiver.close()
            self._receiver = None
        if self._sender is not None:
            await self._sender.close()
            self._sender = None
        await self._close_client()
        logger.info(f"Consumer closed for queue: {self.queue_name}")


# ============================================================================
# DEAD-LETTER SINK
# ============================================================================

class ServiceBusDeadLetterSink(_ServiceBusConnection, DeadLetterSink):
    """Sends dead-letter records to a dedicated Service Bus queue."""

    def __init__(
        self,
        config: MessagingConfig,
        queue_name: Optional[str] = None,
        client: Optional[ServiceBusClient] = None,
    ):
        super().__init__(config, client)
        self.queue_name = queue_name or config.dead_letter_queue_name
        self._sender: Optional[ServiceBusSender] = None

    async def send(self, record: DeadLetterRecord) -> None:
        if self._sender is None:
            client = await self._get_client()
            self._sender = client.get_queue_sender(queue_name=self.queue_name)

        body = record.to_queue_body()
        job_id = record.job_id or "unknown"
        sb_message = build_service_bus_message(
            body,
            message_id=dead_letter_message_id(record, body),
            subject="dead-letter",
            application_properties={
                "job_id": job_id,
                "dlq_reason": record.dlq_reason.value,
                "total_retries": record.total_retries,
            },
        )
        await _send(
            self._sender, self.queue_name, sb_message, timeout=self.config.send_timeout_seconds
        )
        logger.warning(
            f"Dead-lettered job {job_id} to {self.queue_name}: {record.dlq_reason.value}"
        )

    async def close(self) -> None:
        if self._sender is not None:
            await self._sender.close()
            self._sender = None
        await self._close_client()


__all__ = [
    "ServiceBusSendError",
    "is_transient_error",
    "build_service_bus_message",
    "dead_letter_message_id",
    "decode_body",
    "ServiceBusQueueTransport",
    "ServiceBusEnvelope",
    "ServiceBusBatchSource",
    "ServiceBusDeadLetterSink",
]
