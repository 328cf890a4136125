# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for queue policy, priorities and timeouts
# CREATED: 18 OCT 2026
# ============================================================================
"""
Configuration Defaults

Policy constants for the screenshot job queue. Components receive these
explicitly (constructor argument) rather than reading a module-level
singleton, so producer and consumer can be built with injected values in
tests.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides via from_env()
- Type-safe access
"""

import os
from dataclasses import dataclass, field


# Policy constant: retries allowed after the first attempt (3 attempts total)
MAX_RETRIES = 2

SCHEMA_VERSION = "1.0.0"
SUPPORTED_SCHEMA_MAJOR = 1


@dataclass(frozen=True)
class PriorityDefaults:
    """
    Priority levels (1-10, higher = more urgent).

    Priority only selects the immediate-dispatch path; it never reorders
    messages already in the queue.
    """
    default: int = 5
    urgent: int = 10


@dataclass(frozen=True)
class QueueDefaults:
    """
    Defaults for job submission and processing.
    """
    # Retry policy
    max_retries: int = MAX_RETRIES

    # Message schema
    schema_version: str = SCHEMA_VERSION

    # Priorities
    priorities: PriorityDefaults = field(default_factory=PriorityDefaults)

    # Execution budget communicated to the adapter (5 minutes)
    timeout_ms: int = 300_000

    # Queue names
    queue_name: str = "screenshot-queue"
    dead_letter_queue_name: str = "screenshot-dlq"

    # Batch receive
    max_batch_size: int = 10
    max_wait_time_seconds: float = 5.0

    # Deduplication key namespace
    dedup_key_prefix: str = "screenshot"

    @classmethod
    def from_env(cls) -> "QueueDefaults":
        """Create from environment variables."""
        return cls(
            max_retries=int(os.getenv("SCREENSHOT_MAX_RETRIES", MAX_RETRIES)),
            timeout_ms=int(os.getenv("SCREENSHOT_TIMEOUT_MS", 300_000)),
            queue_name=os.getenv("SCREENSHOT_QUEUE_NAME", "screenshot-queue"),
            dead_letter_queue_name=os.getenv("SCREENSHOT_DLQ_NAME", "screenshot-dlq"),
            max_batch_size=int(os.getenv("SCREENSHOT_MAX_BATCH_SIZE", 10)),
            max_wait_time_seconds=float(os.getenv("SCREENSHOT_MAX_WAIT_SECONDS", 5.0)),
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "MAX_RETRIES",
    "SCHEMA_VERSION",
    "SUPPORTED_SCHEMA_MAJOR",
    "PriorityDefaults",
    "QueueDefaults",
]
