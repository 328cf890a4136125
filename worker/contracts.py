# ============================================================================
# WORKER CONTRACTS
# ============================================================================
# STATUS: Core - Execution adapter contract and worker configuration
# PURPOSE: Define the seam between the batch consumer and the renderer
# CREATED: 18 OCT 2026
# ============================================================================
"""
Worker Contracts

The consumer knows nothing about how a screenshot is taken. It hands
validated ExecutionParams and the job's JobConfig to an ExecutionAdapter
and gets an ExecutionResult back:

    result = await adapter.execute(job_id, params, config)

A raised exception and a non-COMPLETED status are treated as the same
failure by the consumer, so adapters may use either.
"""

import os
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from core.config import MAX_RETRIES, QueueDefaults
from core.models import ExecutionParams, ExecutionResult, JobConfig


# ============================================================================
# EXECUTION ADAPTER
# ============================================================================

class ExecutionAdapter(ABC):
    """Abstract base for screenshot execution backends."""

    @abstractmethod
    async def execute(
        self,
        job_id: str,
        params: ExecutionParams,
        config: JobConfig,
    ) -> ExecutionResult:
        """
        Render one screenshot.

        Args:
            job_id: Job identifier (stable across retries)
            params: Validated execution parameters
            config: Per-job execution config (timeout_ms, skip_steps, debug)

        Returns:
            ExecutionResult; only COMPLETED counts as success
        """
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass


# ============================================================================
# WORKER CONFIGURATION
# ============================================================================

@dataclass
class WorkerConfig:
    """Configuration for a screenshot worker."""

    # Identity
    worker_id: str

    # Queues
    queue_name: str = "screenshot-queue"
    dead_letter_queue_name: str = "screenshot-dlq"

    # Renderer
    renderer_url: Optional[str] = None
    renderer_api_key: Optional[str] = None

    # Batching
    max_batch_size: int = 10
    max_wait_time_seconds: float = 5.0
    max_retries: int = MAX_RETRIES

    # Process
    shutdown_timeout_seconds: int = 30
    health_port: int = 8000

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """Create config from environment variables."""
        defaults = QueueDefaults.from_env()
        return cls(
            worker_id=os.getenv("WORKER_ID", f"worker-{socket.gethostname()}"),
            queue_name=defaults.queue_name,
            dead_letter_queue_name=defaults.dead_letter_queue_name,
            renderer_url=os.getenv("SCREENSHOT_RENDERER_URL"),
            renderer_api_key=os.getenv("SCREENSHOT_RENDERER_API_KEY"),
            max_batch_size=defaults.max_batch_size,
            max_wait_time_seconds=defaults.max_wait_time_seconds,
            max_retries=defaults.max_retries,
            shutdown_timeout_seconds=int(os.getenv("SHUTDOWN_TIMEOUT", "30")),
            health_port=int(os.getenv("PORT", "8000")),
        )


__all__ = [
    "ExecutionAdapter",
    "WorkerConfig",
]
