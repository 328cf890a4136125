# ============================================================================
# WORKER MODULE
# ============================================================================
# STATUS: Core - Screenshot worker components
# PURPOSE: Batch consumption, execution adapters, worker process
# CREATED: 18 OCT 2026
# ============================================================================
"""
Worker Module

Components for screenshot execution on worker nodes:
- contracts: ExecutionAdapter contract and worker configuration
- adapter: HTTP execution adapter (rendering service)
- consumer: Batch consumer, receive loop and retry / dead-letter policy
- main: Worker entry point with health server
"""

from worker.contracts import (
    ExecutionAdapter,
    WorkerConfig,
)
from worker.adapter import HTTPExecutionAdapter
from worker.consumer import (
    BatchConsumer,
    QueueWorker,
    decide_failure_action,
    create_worker,
    run_worker,
)

__all__ = [
    # Contracts
    "ExecutionAdapter",
    "WorkerConfig",
    # Adapter
    "HTTPExecutionAdapter",
    # Consumer
    "BatchConsumer",
    "QueueWorker",
    "decide_failure_action",
    "create_worker",
    "run_worker",
]
