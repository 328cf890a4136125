# ============================================================================
# WORKER MAIN ENTRY POINT
# ============================================================================
# STATUS: Core - Worker process entry point
# PURPOSE: Start a screenshot worker in standalone mode
# CREATED: 18 OCT 2026
# ============================================================================
"""
Worker Main Entry Point

Starts a screenshot worker process that:
1. Starts the health server
2. Connects to Service Bus and the rendering service
3. Processes batches until SIGTERM/SIGINT

Usage:
    screenshot-worker

    # Or directly
    python -m worker.main

Environment Variables:
    WORKER_ID: Unique worker identifier
    SCREENSHOT_QUEUE_NAME: Queue to consume (default screenshot-queue)
    SCREENSHOT_DLQ_NAME: Dead-letter queue (default screenshot-dlq)
    SCREENSHOT_RENDERER_URL: Rendering service base URL (required)
    SCREENSHOT_RENDERER_API_KEY: Optional bearer token for the renderer
    SCREENSHOT_MAX_RETRIES: Retries after the first attempt (default 2)
    SCREENSHOT_MAX_BATCH_SIZE: Messages per batch (default 10)
    SERVICEBUS_CONNECTION_STRING: Service Bus connection
    SERVICE_BUS_FQDN: Service Bus namespace (if using managed identity)
    USE_MANAGED_IDENTITY: "true" to use Azure managed identity
    SCREENSHOT_LOG_LEVEL: Log level (default INFO)
    SCREENSHOT_LOG_FORMAT: "json" for structured logs
    PORT: Health server port (default 8000)
"""

import asyncio
import os
import sys
from typing import Optional

from aiohttp import web

from core.logging import configure_logging, get_logger
from worker.contracts import WorkerConfig
from worker.consumer import QueueWorker, create_worker, run_worker
from __version__ import __version__, BUILD_DATE

logger = get_logger(__name__)

# Worker state for health checks
_worker_healthy = True
_worker_status = "starting"
_worker_config: Optional[WorkerConfig] = None
_worker: Optional[QueueWorker] = None


# ============================================================================
# HEALTH SERVER (for Azure Web App probes)
# ============================================================================

HEALTH_ROUTES = ("/", "/health", "/livez", "/readyz")


def _health_payload() -> dict:
    payload = {
        "status": "healthy" if _worker_healthy else "unhealthy",
        "worker_status": _worker_status,
        "version": __version__,
        "build_date": BUILD_DATE,
        "queue": getattr(_worker_config, "queue_name", "unknown"),
        "worker_id": getattr(_worker_config, "worker_id", "unknown"),
        "consuming": bool(_worker and _worker.running),
    }
    if _worker is None:
        return payload

    payload["stats"] = _worker.consumer.stats()
    summary = _worker.last_summary
    if summary is not None:
        payload["last_batch"] = {
            "batch_id": summary.batch_id,
            "success_rate": summary.success_rate,
            "total_duration_ms": summary.total_duration_ms,
        }
    return payload


async def health_handler(request):
    """Report version, queue configuration and consumer stats; 503 once unhealthy."""
    return web.json_response(_health_payload(), status=200 if _worker_healthy else 503)


def create_health_app() -> web.Application:
    app = web.Application()
    for path in HEALTH_ROUTES:
        app.router.add_get(path, health_handler)
    return app


async def start_health_server(port: int = 8000) -> web.AppRunner:
    runner = web.AppRunner(create_health_app())
    await runner.setup()
    await web.TCPSite(runner, "0.0.0.0", port).start()
    logger.info(f"Health probes listening on :{port}")
    return runner


# ============================================================================
# ENTRY POINT
# ============================================================================

def _mark_unhealthy(status: str) -> None:
    global _worker_healthy, _worker_status
    _worker_healthy = False
    _worker_status = status


async def main() -> None:
    global _worker_status, _worker_config, _worker

    configure_logging(
        level=os.environ.get("SCREENSHOT_LOG_LEVEL", "INFO"),
        json_output=os.environ.get("SCREENSHOT_LOG_FORMAT", "").lower() == "json",
    )

    _worker_config = config = WorkerConfig.from_env()
    logger.info(
        f"Screenshot worker v{__version__} starting: id={config.worker_id} "
        f"queue={config.queue_name} dlq={config.dead_letter_queue_name} "
        f"max_retries={config.max_retries}"
    )

    health_runner = await start_health_server(config.health_port)
    exit_code = 0
    try:
        _worker = create_worker(config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        _mark_unhealthy("misconfigured")
        await health_runner.cleanup()
        sys.exit(1)

    _worker_status = "running"
    try:
        await run_worker(config, worker=_worker)
    except Exception as e:
        logger.exception(f"Worker failed: {e}")
        _mark_unhealthy(f"error: {str(e)[:100]}")
        exit_code = 1
    finally:
        await health_runner.cleanup()

    if exit_code:
        sys.exit(exit_code)
    logger.info("Screenshot worker stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
