# ============================================================================
# ERRORS
# ============================================================================
# STATUS: Foundation - Typed errors for the job queue
# PURPOSE: Error codes and exception hierarchy for submission and processing
# CREATED: 18 OCT 2026
# ============================================================================
"""
Job Queue Errors

Error taxonomy:
    SubmissionError       - transport send failed (producer, synchronous)
    BatchSubmissionError  - one or more sends of a batch failed
    JobValidationError    - payload malformed or missing required fields (terminal)
    ExecutionError        - adapter raised or reported a failure status (retryable)
    DeadLetterSendError   - the dead-letter sink rejected a record

All errors carry an ErrorCode, an HTTP-style status code, free-form context
and the time they were raised, and serialize via to_dict() for logging.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ErrorCode(str, Enum):
    """Error codes for the screenshot job queue."""
    # Queue errors
    QUEUE_SEND_FAILED = "QUEUE_SEND_FAILED"
    QUEUE_PROCESSING_FAILED = "QUEUE_PROCESSING_FAILED"
    DEAD_LETTER_SEND_FAILED = "DEAD_LETTER_SEND_FAILED"

    # Validation errors
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_PARAMETERS = "MISSING_PARAMETERS"
    UNSUPPORTED_SCHEMA_VERSION = "UNSUPPORTED_SCHEMA_VERSION"

    # Execution errors
    SCREENSHOT_FAILED = "SCREENSHOT_FAILED"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class JobQueueError(Exception):
    """Base class for all job queue errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code.value,
            "status_code": self.status_code,
            "context": self.context,
            "timestamp": self.timestamp,
        }


class SubmissionError(JobQueueError):
    """Raised when the queue transport rejects a send."""

    def __init__(
        self,
        message: str,
        body: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            code=ErrorCode.QUEUE_SEND_FAILED,
            status_code=500,
            context={
                "message": body,
                "options": options,
                "original_error": repr(original_error) if original_error else None,
            },
        )
        self.body = body
        self.options = options
        self.original_error = original_error


class BatchSubmissionError(JobQueueError):
    """Raised after a batch send when at least one message failed."""

    def __init__(self, failures: List[Tuple[str, BaseException]], total: int):
        failed_ids = [job_id for job_id, _ in failures]
        super().__init__(
            f"Failed to send {len(failures)} of {total} messages to screenshot queue: "
            f"{', '.join(failed_ids)}",
            code=ErrorCode.QUEUE_SEND_FAILED,
            status_code=500,
            context={
                "message_count": total,
                "failed": {job_id: str(error) for job_id, error in failures},
            },
        )
        self.failures = failures
        self.total = total

    @property
    def failed_job_ids(self) -> List[str]:
        return [job_id for job_id, _ in self.failures]


class JobValidationError(JobQueueError):
    """Raised when a job payload can never be processed."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_REQUEST,
        missing: Optional[List[str]] = None,
    ):
        super().__init__(
            message,
            code=code,
            status_code=400,
            context={"missing_parameters": missing} if missing else None,
        )
        self.missing = missing or []

    @classmethod
    def missing_parameters(cls, parameters: List[str]) -> "JobValidationError":
        return cls(
            f"Missing required parameters: {', '.join(parameters)}",
            code=ErrorCode.MISSING_PARAMETERS,
            missing=parameters,
        )


class ExecutionError(JobQueueError):
    """Raised when the execution adapter reports a failure."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SCREENSHOT_FAILED,
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=status_code, context=context)


class DeadLetterSendError(JobQueueError):
    """Raised when a dead-letter record could not be persisted."""

    def __init__(self, job_id: str, original_error: BaseException):
        super().__init__(
            f"Failed to send job {job_id} to dead-letter queue: {original_error}",
            code=ErrorCode.DEAD_LETTER_SEND_FAILED,
            status_code=500,
            context={"job_id": job_id, "original_error": repr(original_error)},
        )
        self.job_id = job_id
        self.original_error = original_error


__all__ = [
    "ErrorCode",
    "JobQueueError",
    "SubmissionError",
    "BatchSubmissionError",
    "JobValidationError",
    "ExecutionError",
    "DeadLetterSendError",
]
