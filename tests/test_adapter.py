# ============================================================================
# HTTP EXECUTION ADAPTER TESTS
# ============================================================================
# STATUS: Tests - Renderer HTTP calls (mocked aiohttp session)
# PURPOSE: Verify request shape and failure mapping
# CREATED: 18 OCT 2026
# ============================================================================
"""
HTTP Execution Adapter Tests

Run with:
    pytest tests/test_adapter.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from core.contracts import ScreenshotStatus
from core.errors import ErrorCode, ExecutionError
from core.models import ExecutionParams, JobConfig
from worker.adapter import HTTPExecutionAdapter


@pytest.fixture
def params():
    return ExecutionParams(
        project_id="proj-1",
        plan_id="plan-1",
        org_id="org-1",
        user_id="user-1",
        preview_url="https://preview.example.com/p",
    )


def mock_session(status=200, json_data=None, text=""):
    """aiohttp.ClientSession double whose post() yields one response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)

    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.post = MagicMock(return_value=ctx)
    session.close = AsyncMock()
    return session


class TestRequest:
    """Request construction."""

    def test_posts_job_to_renderer(self, params):
        session = mock_session(json_data={"status": "completed", "artifact_url": "https://cdn/a.png"})
        adapter = HTTPExecutionAdapter("https://renderer.local/", api_key="secret", session=session)
        config = JobConfig(timeout_ms=5000, skip_steps=["upload"])

        result = asyncio.run(adapter.execute("job-1", params, config))

        assert result.succeeded
        assert result.artifact_url == "https://cdn/a.png"

        args, kwargs = session.post.call_args
        assert args[0] == "https://renderer.local/api/v1/screenshots/job-1"
        assert kwargs["json"]["job_id"] == "job-1"
        assert kwargs["json"]["params"]["preview_url"] == "https://preview.example.com/p"
        assert kwargs["json"]["config"]["skip_steps"] == ["upload"]
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["timeout"].total == 5.0

    def test_no_auth_header_without_key(self, params):
        session = mock_session(json_data={"status": "completed"})
        adapter = HTTPExecutionAdapter("https://renderer.local", session=session)

        asyncio.run(adapter.execute("job-1", params, JobConfig()))

        assert "Authorization" not in session.post.call_args.kwargs["headers"]

    def test_close_leaves_injected_session_open(self, params):
        session = mock_session()
        adapter = HTTPExecutionAdapter("https://renderer.local", session=session)
        asyncio.run(adapter.close())
        session.close.assert_not_awaited()


class TestFailureMapping:
    """Every failure mode surfaces as a failure."""

    def test_failed_status_passed_through(self, params):
        session = mock_session(json_data={"status": "failed", "error": "page 404"})
        adapter = HTTPExecutionAdapter("https://renderer.local", session=session)

        result = asyncio.run(adapter.execute("job-1", params, JobConfig()))

        assert not result.succeeded
        assert result.status == ScreenshotStatus.FAILED
        assert result.error == "page 404"

    def test_non_2xx_is_failed_result(self, params):
        session = mock_session(status=503, text="overloaded")
        adapter = HTTPExecutionAdapter("https://renderer.local", session=session)

        result = asyncio.run(adapter.execute("job-1", params, JobConfig()))

        assert result.status == ScreenshotStatus.FAILED
        assert "503" in result.error

    def test_unknown_status_is_failed_result(self, params):
        session = mock_session(json_data={"status": "exploded"})
        adapter = HTTPExecutionAdapter("https://renderer.local", session=session)

        result = asyncio.run(adapter.execute("job-1", params, JobConfig()))
        assert result.status == ScreenshotStatus.FAILED

    def test_non_object_response_is_failed_result(self, params):
        session = mock_session(json_data=["completed"])
        adapter = HTTPExecutionAdapter("https://renderer.local", session=session)

        result = asyncio.run(adapter.execute("job-1", params, JobConfig()))
        assert not result.succeeded

    def test_timeout_raises(self, params):
        session = mock_session()
        session.post.side_effect = asyncio.TimeoutError()
        adapter = HTTPExecutionAdapter("https://renderer.local", session=session)

        with pytest.raises(ExecutionError) as exc_info:
            asyncio.run(adapter.execute("job-1", params, JobConfig(timeout_ms=1000)))
        assert exc_info.value.code == ErrorCode.TIMEOUT_ERROR

    def test_connection_error_raises(self, params):
        session = mock_session()
        session.post.side_effect = aiohttp.ClientConnectionError("refused")
        adapter = HTTPExecutionAdapter("https://renderer.local", session=session)

        with pytest.raises(ExecutionError) as exc_info:
            asyncio.run(adapter.execute("job-1", params, JobConfig()))
        assert exc_info.value.code == ErrorCode.EXTERNAL_SERVICE_ERROR
