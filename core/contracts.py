# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# STATUS: Foundation - Core enums shared by producer and consumer
# PURPOSE: Define status, dead-letter and settlement enums for the job queue
# LAST_REVIEWED: 18 OCT 2026
# EXPORTS: ScreenshotStatus, DLQReason, Settlement, FailureAction
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the screenshot job queue.

These enums cross boundaries:
- Queue (message bodies and dead-letter records)
- Execution adapter (reported status)
- Python (internal processing and batch summaries)
"""

from enum import Enum


# ============================================================================
# STATUS ENUMS
# ============================================================================

class ScreenshotStatus(str, Enum):
    """
    Screenshot lifecycle states as reported by the execution adapter.

    State transitions:
        PENDING -> PROCESSING -> VALIDATING -> CAPTURING -> STORING -> COMPLETED
                                                                    -> FAILED
                -> CANCELLED
    """
    PENDING = "pending"
    PROCESSING = "processing"
    VALIDATING = "validating"
    CAPTURING = "capturing"
    STORING = "storing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in (
            ScreenshotStatus.COMPLETED,
            ScreenshotStatus.FAILED,
            ScreenshotStatus.CANCELLED,
        )

    def is_successful(self) -> bool:
        """Only COMPLETED counts as success for retry accounting."""
        return self is ScreenshotStatus.COMPLETED


class DLQReason(str, Enum):
    """Why a message was routed to the dead-letter sink."""
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"
    INVALID_PAYLOAD = "invalid_payload"


class Settlement(str, Enum):
    """
    How a delivered message left the consumer.

    A message is settled at most once per delivery:
        ACKED          - processed successfully, removed from the queue
        RETRIED        - redelivered with retry_count + 1
        DEAD_LETTERED  - sent to the dead-letter sink, then removed
        UNSETTLED      - neither acked nor retried; visibility timeout redelivers
    """
    ACKED = "acked"
    RETRIED = "retried"
    DEAD_LETTERED = "dead_lettered"
    UNSETTLED = "unsettled"


class FailureAction(str, Enum):
    """Decision taken for a failed delivery."""
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


__all__ = [
    "ScreenshotStatus",
    "DLQReason",
    "Settlement",
    "FailureAction",
]
