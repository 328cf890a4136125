# ============================================================================
# CORE MODULE
# ============================================================================
# STATUS: Core module initialization
# PURPOSE: Export core contracts, errors and models
# LAST_REVIEWED: 18 OCT 2026
# ============================================================================

from core.contracts import DLQReason, FailureAction, ScreenshotStatus, Settlement
from core.errors import (
    ErrorCode,
    JobQueueError,
    SubmissionError,
    BatchSubmissionError,
    JobValidationError,
    ExecutionError,
    DeadLetterSendError,
)
from core.models import (
    JobMetadata,
    JobParameters,
    ExecutionParams,
    JobConfig,
    JobMessage,
    next_attempt,
    ExecutionResult,
    BatchProcessingResult,
    BatchSummary,
    DeadLetterRecord,
)

__all__ = [
    # Enums
    "ScreenshotStatus",
    "DLQReason",
    "Settlement",
    "FailureAction",
    # Errors
    "ErrorCode",
    "JobQueueError",
    "SubmissionError",
    "BatchSubmissionError",
    "JobValidationError",
    "ExecutionError",
    "DeadLetterSendError",
    # Models
    "JobMetadata",
    "JobParameters",
    "ExecutionParams",
    "JobConfig",
    "JobMessage",
    "next_attempt",
    "ExecutionResult",
    "BatchProcessingResult",
    "BatchSummary",
    "DeadLetterRecord",
]
