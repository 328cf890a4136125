# ============================================================================
# RESULT MODELS
# ============================================================================
# STATUS: Core model - Execution outcomes, batch results, dead-letter records
# PURPOSE: Pydantic models produced by the batch consumer
# CREATED: 18 OCT 2026
# EXPORTS: ExecutionResult, BatchProcessingResult, BatchSummary, DeadLetterRecord
# DEPENDENCIES: pydantic
# ============================================================================
"""
Result Models

- ExecutionResult: what the execution adapter reports for one job
- BatchProcessingResult: one outcome per delivered message
- BatchSummary: aggregate over one delivered batch (observational only)
- DeadLetterRecord: terminal record sent to the dead-letter sink
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from core.contracts import DLQReason, ScreenshotStatus, Settlement


class ExecutionResult(BaseModel):
    """Outcome reported by the execution adapter."""

    status: ScreenshotStatus
    artifact_url: Optional[str] = None
    error: Optional[str] = Field(default=None, max_length=2000)

    @property
    def succeeded(self) -> bool:
        return self.status.is_successful()

    @classmethod
    def completed(cls, artifact_url: Optional[str] = None) -> "ExecutionResult":
        return cls(status=ScreenshotStatus.COMPLETED, artifact_url=artifact_url)

    @classmethod
    def failed(cls, error: str) -> "ExecutionResult":
        return cls(status=ScreenshotStatus.FAILED, error=error[:2000] if error else None)


class BatchProcessingResult(BaseModel):
    """Result for a single delivered message."""

    message_id: str
    job_id: str
    success: bool
    status: ScreenshotStatus
    artifact_url: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = Field(default=0, ge=0)
    settlement: Settlement = Settlement.UNSETTLED


class BatchSummary(BaseModel):
    """Aggregate over one delivered batch."""

    batch_id: str
    results: List[BatchProcessingResult] = Field(default_factory=list)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    total_duration_ms: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    retried_count: int = Field(default=0, ge=0)
    dead_lettered_count: int = Field(default=0, ge=0)

    @classmethod
    def from_results(
        cls,
        batch_id: str,
        results: List[BatchProcessingResult],
        total_duration_ms: int,
    ) -> "BatchSummary":
        success_count = sum(1 for r in results if r.success)
        return cls(
            batch_id=batch_id,
            results=results,
            success_rate=success_count / len(results) if results else 0.0,
            total_duration_ms=total_duration_ms,
            failure_count=len(results) - success_count,
            retried_count=sum(1 for r in results if r.settlement == Settlement.RETRIED),
            dead_lettered_count=sum(
                1 for r in results if r.settlement == Settlement.DEAD_LETTERED
            ),
        )


class DeadLetterRecord(BaseModel):
    """
    Terminal record for a job that exhausted retries or failed validation.

    original_message is the body exactly as delivered, so records can be
    built for payloads that never parsed into a JobMessage.
    """

    original_message: Dict[str, Any]
    dlq_reason: DLQReason
    original_queue_name: str
    final_error: str
    total_retries: int = Field(..., ge=0, description="Failed attempts, including the last")
    retry_history: List[str] = Field(default_factory=list)
    dead_lettered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def job_id(self) -> Optional[str]:
        metadata = self.original_message.get("metadata")
        if isinstance(metadata, Mapping):
            return metadata.get("job_id")
        return None

    @classmethod
    def for_message(
        cls,
        body: Mapping[str, Any],
        reason: DLQReason,
        queue_name: str,
        error: str,
        now: Optional[datetime] = None,
    ) -> "DeadLetterRecord":
        """
        Build a record from a delivered body.

        total_retries counts the failed attempt that triggered dead-lettering;
        retry_history gets that attempt's timestamp appended.
        """
        now = now or datetime.now(timezone.utc)
        metadata = body.get("metadata") if isinstance(body, Mapping) else None
        if not isinstance(metadata, Mapping):
            metadata = {}

        retry_count = metadata.get("retry_count", 0)
        if not isinstance(retry_count, int) or retry_count < 0:
            retry_count = 0
        history = metadata.get("retry_history") or []
        if not isinstance(history, list):
            history = []

        return cls(
            original_message=dict(body) if isinstance(body, Mapping) else {},
            dlq_reason=reason,
            original_queue_name=queue_name,
            final_error=error,
            total_retries=retry_count + 1,
            retry_history=[*(str(h) for h in history), now.isoformat()],
            dead_lettered_at=now,
        )

    def to_queue_body(self) -> Dict[str, Any]:
        """Original message with dead-letter provenance merged in."""
        body = dict(self.original_message)
        body.update(
            {
                "dlq_reason": self.dlq_reason.value,
                "original_queue_name": self.original_queue_name,
                "final_error": self.final_error,
                "total_retries": self.total_retries,
                "retry_history": list(self.retry_history),
                "dead_lettered_at": self.dead_lettered_at.isoformat(),
            }
        )
        return body


__all__ = [
    "ExecutionResult",
    "BatchProcessingResult",
    "BatchSummary",
    "DeadLetterRecord",
]
