# ============================================================================
# JOB MESSAGE MODEL
# ============================================================================
# STATUS: Core model - Queue message for screenshot jobs
# PURPOSE: Pydantic models for screenshot-queue message bodies
# CREATED: 18 OCT 2026
# EXPORTS: JobMetadata, JobParameters, ExecutionParams, JobConfig, JobMessage,
#          next_attempt
# DEPENDENCIES: pydantic
# ============================================================================
"""
Job Message Model

Pydantic models for messages on the screenshot queue. A JobMessage is the
unit stored in the queue and carried across every redelivery.

Key Design:
- retry_count lives in the body, never inferred from transport delivery counts
- Bodies are versioned (schema_version) and validated at the boundary
- Models are frozen; the only way to advance an attempt is next_attempt()
- Explicit serialization via to_queue_body() / from_queue_body()
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.config.defaults import SCHEMA_VERSION, SUPPORTED_SCHEMA_MAJOR
from core.errors import ErrorCode, JobValidationError


# Parameters that must be present before the execution adapter is invoked
REQUIRED_EXECUTION_FIELDS = ("project_id", "plan_id", "org_id", "user_id", "preview_url")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _schema_major(version: str) -> int:
    return int(version.split(".", 1)[0])


# ============================================================================
# METADATA
# ============================================================================

class JobMetadata(BaseModel):
    """
    Tracking metadata for a job.

    retry_count starts at 0 and is only ever advanced by next_attempt().
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    job_id: str = Field(..., min_length=1, max_length=128, description="Unique job identifier")
    created_at: datetime = Field(default_factory=_utcnow, description="When the job was created")
    submitter_user_id: str = Field(..., min_length=1, max_length=64)
    organization_id: str = Field(..., min_length=1, max_length=64)
    schema_version: str = Field(default=SCHEMA_VERSION, max_length=16)
    priority: int = Field(default=5, ge=1, le=10, description="1-10, higher = more urgent")
    retry_count: int = Field(default=0, ge=0, description="Failed attempts so far")
    last_error: Optional[str] = Field(default=None, max_length=2000)
    retry_history: List[str] = Field(
        default_factory=list,
        description="ISO timestamps of failed attempts (append-only)",
    )

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v: str) -> str:
        parts = v.split(".")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError(f"schema_version must look like '1.0.0', got '{v}'")
        return v


# ============================================================================
# PARAMETERS
# ============================================================================

class JobParameters(BaseModel):
    """
    Screenshot parameters as submitted.

    preview_url may be absent at submission time; it is required before
    execution (see to_execution_params).
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    project_id: str = Field(..., min_length=1, max_length=128)
    plan_id: str = Field(..., min_length=1, max_length=128)
    org_id: str = Field(..., min_length=1, max_length=64)
    user_id: str = Field(..., min_length=1, max_length=64)
    preview_url: Optional[str] = Field(default=None, max_length=2048)

    def to_execution_params(self) -> "ExecutionParams":
        """
        Convert to the validated form required by the execution adapter.

        Raises:
            JobValidationError: If any required field is missing or invalid
        """
        missing = [name for name in REQUIRED_EXECUTION_FIELDS if not getattr(self, name)]
        if missing:
            raise JobValidationError.missing_parameters(missing)

        try:
            return ExecutionParams(**self.model_dump())
        except ValidationError as e:
            raise JobValidationError(
                f"Invalid screenshot parameters: {_describe_errors(e)}",
                code=ErrorCode.INVALID_REQUEST,
            ) from e


class ExecutionParams(BaseModel):
    """Fully validated parameters handed to the execution adapter."""

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(..., min_length=1)
    plan_id: str = Field(..., min_length=1)
    org_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    preview_url: str = Field(..., min_length=1)

    @field_validator("preview_url")
    @classmethod
    def validate_preview_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("preview_url must be an http(s) URL")
        return v


# ============================================================================
# CONFIG
# ============================================================================

class JobConfig(BaseModel):
    """Per-job execution options, passed through to the adapter."""

    model_config = ConfigDict(frozen=True)

    timeout_ms: int = Field(default=300_000, ge=1, description="Soft execution budget")
    skip_steps: List[str] = Field(default_factory=list)
    debug: bool = False


# ============================================================================
# MESSAGE
# ============================================================================

class JobMessage(BaseModel):
    """
    Message format for the screenshot queue.

    Lifecycle:
        1. Producer creates JobMessage with retry_count=0
        2. Producer sends it to the queue (plain, priority, delayed or deduplicated)
        3. Consumer receives it in a batch (possibly several times)
        4. Consumer acks on success, redelivers next_attempt(...) on failure,
           or dead-letters once retries are exhausted
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "metadata": {
                    "job_id": "screenshot_1760745600000_k3j9x2m1q",
                    "created_at": "2026-10-18T00:00:00Z",
                    "submitter_user_id": "user-1",
                    "organization_id": "org-1",
                    "schema_version": "1.0.0",
                    "priority": 5,
                    "retry_count": 0,
                },
                "params": {
                    "project_id": "proj-1",
                    "plan_id": "plan-1",
                    "org_id": "org-1",
                    "user_id": "user-1",
                    "preview_url": "https://preview.example.com/proj-1",
                },
                "config": {"timeout_ms": 300000, "debug": False},
            }
        },
    )

    metadata: JobMetadata
    params: JobParameters
    config: JobConfig = Field(default_factory=JobConfig)

    @property
    def job_id(self) -> str:
        return self.metadata.job_id

    @property
    def retry_count(self) -> int:
        return self.metadata.retry_count

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_queue_body(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict for the queue transport."""
        return self.model_dump(mode="json")

    @classmethod
    def from_queue_body(cls, body: Union[Mapping[str, Any], str, bytes]) -> "JobMessage":
        """
        Deserialize and validate a delivered message body.

        Args:
            body: Dict (or JSON text) as delivered by the transport

        Returns:
            JobMessage instance

        Raises:
            JobValidationError: If the body is malformed, is missing required
                fields, or carries an unsupported schema_version
        """
        if isinstance(body, (str, bytes)):
            try:
                body = json.loads(body)
            except ValueError as e:
                raise JobValidationError(f"Message body is not valid JSON: {e}") from e

        if not isinstance(body, Mapping):
            raise JobValidationError(
                f"Message body must be a JSON object, got {type(body).__name__}"
            )

        metadata = body.get("metadata")
        if isinstance(metadata, Mapping) and metadata.get("schema_version"):
            version = str(metadata["schema_version"])
            try:
                major = _schema_major(version)
            except ValueError:
                major = None
            if major != SUPPORTED_SCHEMA_MAJOR:
                raise JobValidationError(
                    f"Unsupported schema_version '{version}' "
                    f"(supported: {SUPPORTED_SCHEMA_MAJOR}.x)",
                    code=ErrorCode.UNSUPPORTED_SCHEMA_VERSION,
                )

        try:
            return cls.model_validate(body)
        except ValidationError as e:
            missing = [
                ".".join(str(p) for p in err["loc"])
                for err in e.errors()
                if err["type"] in ("missing", "string_too_short")
            ]
            if missing:
                raise JobValidationError.missing_parameters(missing) from e
            raise JobValidationError(f"Invalid job message: {_describe_errors(e)}") from e


# ============================================================================
# STATE TRANSITION
# ============================================================================

def next_attempt(
    message: JobMessage,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> JobMessage:
    """
    Advance a message to its next attempt.

    Returns a new message with retry_count + 1, last_error set (or kept when
    error is None) and the failure timestamp appended to retry_history. The
    input message is not modified.
    """
    now = now or _utcnow()
    metadata = message.metadata
    updated = metadata.model_copy(
        update={
            "retry_count": metadata.retry_count + 1,
            "last_error": error[:2000] if error else metadata.last_error,
            "retry_history": [*metadata.retry_history, now.isoformat()],
        }
    )
    return message.model_copy(update={"metadata": updated})


def _describe_errors(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
        for err in error.errors()
    )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "REQUIRED_EXECUTION_FIELDS",
    "JobMetadata",
    "JobParameters",
    "ExecutionParams",
    "JobConfig",
    "JobMessage",
    "next_attempt",
]
