# ============================================================================
# MODELS MODULE
# ============================================================================
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 18 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the screenshot job queue.
"""

from core.models.job_message import (
    REQUIRED_EXECUTION_FIELDS,
    JobMetadata,
    JobParameters,
    ExecutionParams,
    JobConfig,
    JobMessage,
    next_attempt,
)
from core.models.results import (
    ExecutionResult,
    BatchProcessingResult,
    BatchSummary,
    DeadLetterRecord,
)

__all__ = [
    # Message
    "REQUIRED_EXECUTION_FIELDS",
    "JobMetadata",
    "JobParameters",
    "ExecutionParams",
    "JobConfig",
    "JobMessage",
    "next_attempt",
    # Results
    "ExecutionResult",
    "BatchProcessingResult",
    "BatchSummary",
    "DeadLetterRecord",
]
