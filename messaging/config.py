# ============================================================================
# MESSAGING CONFIGURATION
# ============================================================================
# STATUS: Core - Service Bus configuration
# PURPOSE: Connection and queue settings for the Service Bus transport
# CREATED: 18 OCT 2026
# ============================================================================
"""
Messaging Configuration

Connection settings for Azure Service Bus, either a connection string or a
namespace reached through managed identity, plus the job and dead-letter
queue names shared by producer and worker.

Environment:
    SERVICEBUS_CONNECTION_STRING   connection string auth
    USE_MANAGED_IDENTITY=true      managed identity auth, requires SERVICE_BUS_FQDN
    AZURE_CLIENT_ID                user-assigned identity (optional)
    SCREENSHOT_QUEUE_NAME          job queue (default screenshot-queue)
    SCREENSHOT_DLQ_NAME            dead-letter queue (default screenshot-dlq)
    SERVICEBUS_SEND_TIMEOUT        seconds (default 30)
    SERVICEBUS_RECEIVE_TIMEOUT     seconds to wait for a batch (default 5)
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class MessagingConfig:
    """Azure Service Bus settings. Exactly one auth mode is populated."""

    connection_string: Optional[str] = None
    fully_qualified_namespace: Optional[str] = None
    use_managed_identity: bool = False
    managed_identity_client_id: Optional[str] = None

    queue_name: str = "screenshot-queue"
    dead_letter_queue_name: str = "screenshot-dlq"

    send_timeout_seconds: int = 30
    receive_timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "MessagingConfig":
        """
        Load configuration from environment variables.

        Raises:
            ValueError: If no usable auth mode is configured
        """
        env = os.environ
        settings = dict(
            queue_name=env.get("SCREENSHOT_QUEUE_NAME", "screenshot-queue"),
            dead_letter_queue_name=env.get("SCREENSHOT_DLQ_NAME", "screenshot-dlq"),
            send_timeout_seconds=int(env.get("SERVICEBUS_SEND_TIMEOUT", "30")),
            receive_timeout_seconds=float(env.get("SERVICEBUS_RECEIVE_TIMEOUT", "5")),
        )

        if env.get("USE_MANAGED_IDENTITY", "").lower() == "true":
            namespace = env.get("SERVICE_BUS_FQDN")
            if not namespace:
                raise ValueError("SERVICE_BUS_FQDN required when USE_MANAGED_IDENTITY=true")
            return cls(
                use_managed_identity=True,
                fully_qualified_namespace=namespace,
                managed_identity_client_id=env.get("AZURE_CLIENT_ID"),
                **settings,
            )

        connection_string = env.get("SERVICEBUS_CONNECTION_STRING")
        if not connection_string:
            raise ValueError(
                "SERVICEBUS_CONNECTION_STRING required (or set USE_MANAGED_IDENTITY=true)"
            )
        return cls(connection_string=connection_string, **settings)
