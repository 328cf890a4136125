# ============================================================================
# CONFIGURATION & HEALTH TESTS
# ============================================================================
# STATUS: Tests - Environment-driven configuration and worker health endpoint
# PURPOSE: Verify from_env() defaults/overrides and the health payload
# CREATED: 18 OCT 2026
# ============================================================================
"""
Configuration & Health Tests

Run with:
    pytest tests/test_config.py -v
"""

import asyncio
import json

import pytest

from core.config import MAX_RETRIES, QueueDefaults
from messaging import InMemoryDeadLetterSink, InMemoryQueue, MessagingConfig
from worker import main as worker_main
from worker.consumer import BatchConsumer, QueueWorker, create_worker
from worker.contracts import ExecutionAdapter, WorkerConfig


ENV_VARS = [
    "SCREENSHOT_MAX_RETRIES",
    "SCREENSHOT_TIMEOUT_MS",
    "SCREENSHOT_QUEUE_NAME",
    "SCREENSHOT_DLQ_NAME",
    "SCREENSHOT_MAX_BATCH_SIZE",
    "SCREENSHOT_MAX_WAIT_SECONDS",
    "SCREENSHOT_RENDERER_URL",
    "SERVICEBUS_CONNECTION_STRING",
    "SERVICE_BUS_FQDN",
    "USE_MANAGED_IDENTITY",
    "AZURE_CLIENT_ID",
    "WORKER_ID",
    "PORT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestQueueDefaults:
    def test_defaults(self):
        defaults = QueueDefaults.from_env()
        assert defaults.max_retries == MAX_RETRIES == 2
        assert defaults.timeout_ms == 300_000
        assert defaults.priorities.default == 5
        assert defaults.priorities.urgent == 10
        assert defaults.queue_name == "screenshot-queue"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("SCREENSHOT_MAX_RETRIES", "4")
        monkeypatch.setenv("SCREENSHOT_QUEUE_NAME", "shots")
        defaults = QueueDefaults.from_env()
        assert defaults.max_retries == 4
        assert defaults.queue_name == "shots"


class TestMessagingConfig:
    def test_requires_connection(self):
        with pytest.raises(ValueError):
            MessagingConfig.from_env()

    def test_connection_string(self, monkeypatch):
        monkeypatch.setenv("SERVICEBUS_CONNECTION_STRING", "Endpoint=sb://x/")
        config = MessagingConfig.from_env()
        assert config.connection_string == "Endpoint=sb://x/"
        assert config.use_managed_identity is False
        assert config.dead_letter_queue_name == "screenshot-dlq"

    def test_managed_identity_requires_fqdn(self, monkeypatch):
        monkeypatch.setenv("USE_MANAGED_IDENTITY", "true")
        with pytest.raises(ValueError):
            MessagingConfig.from_env()

    def test_managed_identity(self, monkeypatch):
        monkeypatch.setenv("USE_MANAGED_IDENTITY", "true")
        monkeypatch.setenv("SERVICE_BUS_FQDN", "ns.servicebus.windows.net")
        monkeypatch.setenv("AZURE_CLIENT_ID", "client-1")
        config = MessagingConfig.from_env()
        assert config.fully_qualified_namespace == "ns.servicebus.windows.net"
        assert config.managed_identity_client_id == "client-1"


class TestWorkerConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("WORKER_ID", "w-1")
        monkeypatch.setenv("SCREENSHOT_RENDERER_URL", "https://renderer.local")
        monkeypatch.setenv("SCREENSHOT_MAX_RETRIES", "3")
        monkeypatch.setenv("PORT", "9000")
        config = WorkerConfig.from_env()
        assert config.worker_id == "w-1"
        assert config.renderer_url == "https://renderer.local"
        assert config.max_retries == 3
        assert config.health_port == 9000

    def test_create_worker_requires_renderer(self):
        with pytest.raises(ValueError):
            create_worker(WorkerConfig(worker_id="w-1"))

    def test_create_worker_wires_config(self):
        config = WorkerConfig(
            worker_id="w-1",
            renderer_url="https://renderer.local",
            queue_name="shots",
            max_retries=5,
            max_batch_size=3,
        )
        worker = create_worker(config, MessagingConfig(connection_string="Endpoint=sb://x/"))
        assert worker.consumer.queue_name == "shots"
        assert worker.consumer.max_retries == 5
        assert worker.max_batch_size == 3


class NoopAdapter(ExecutionAdapter):
    async def execute(self, job_id, params, config):
        raise NotImplementedError


class TestHealthEndpoint:
    def test_unconfigured(self, monkeypatch):
        monkeypatch.setattr(worker_main, "_worker", None)
        monkeypatch.setattr(worker_main, "_worker_config", None)
        monkeypatch.setattr(worker_main, "_worker_healthy", True)

        response = asyncio.run(worker_main.health_handler(None))
        body = json.loads(response.text)

        assert response.status == 200
        assert body["status"] == "healthy"
        assert body["queue"] == "unknown"
        assert body["consuming"] is False

    def test_reports_stats(self, monkeypatch):
        consumer = BatchConsumer(NoopAdapter(), InMemoryDeadLetterSink(), queue_name="shots")
        consumer.jobs_completed = 7
        worker = QueueWorker(InMemoryQueue(), consumer)
        monkeypatch.setattr(worker_main, "_worker", worker)
        monkeypatch.setattr(worker_main, "_worker_config", WorkerConfig(worker_id="w-1", queue_name="shots"))
        monkeypatch.setattr(worker_main, "_worker_healthy", True)

        body = json.loads(asyncio.run(worker_main.health_handler(None)).text)

        assert body["worker_id"] == "w-1"
        assert body["queue"] == "shots"
        assert body["stats"]["jobs_completed"] == 7

    def test_unhealthy_returns_503(self, monkeypatch):
        monkeypatch.setattr(worker_main, "_worker", None)
        monkeypatch.setattr(worker_main, "_worker_healthy", False)

        response = asyncio.run(worker_main.health_handler(None))
        assert response.status == 503

    def test_routes(self):
        app = worker_main.create_health_app()
        paths = {resource.canonical for resource in app.router.resources()}
        assert {"/", "/health", "/livez", "/readyz"} <= paths
