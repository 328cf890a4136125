# ============================================================================
# HTTP EXECUTION ADAPTER
# ============================================================================
# STATUS: Core - Screenshot execution over HTTP
# PURPOSE: Forward validated jobs to the rendering service
# CREATED: 18 OCT 2026
# ============================================================================
"""
HTTP Execution Adapter

Forwards each job to the rendering service:

    POST {base_url}/api/v1/screenshots/{job_id}
    {"job_id": ..., "params": {...}, "config": {...}}

The service answers with {"status": ..., "artifact_url": ..., "error": ...}.

Failure mapping:
    timeout (config.timeout_ms)   -> ExecutionError(TIMEOUT_ERROR)
    connection / client error     -> ExecutionError(EXTERNAL_SERVICE_ERROR)
    non-2xx response              -> ExecutionResult(FAILED)
    unparseable response          -> ExecutionResult(FAILED)
    status other than completed   -> returned as-is (consumer treats as failure)
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from core.contracts import ScreenshotStatus
from core.errors import ErrorCode, ExecutionError
from core.models import ExecutionParams, ExecutionResult, JobConfig
from worker.contracts import ExecutionAdapter

logger = logging.getLogger(__name__)


class HTTPExecutionAdapter(ExecutionAdapter):
    """Executes screenshots by calling the rendering service."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize HTTP adapter.

        Args:
            base_url: Rendering service base URL
            api_key: Optional bearer token
            session: Existing session to use (not closed by close())
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def execute(
        self,
        job_id: str,
        params: ExecutionParams,
        config: JobConfig,
    ) -> ExecutionResult:
        url = f"{self._base_url}/api/v1/screenshots/{job_id}"
        payload = {
            "job_id": job_id,
            "params": params.model_dump(mode="json"),
            "config": config.model_dump(mode="json"),
        }
        timeout = aiohttp.ClientTimeout(total=config.timeout_ms / 1000)

        try:
            session = await self._get_session()

            async with session.post(
                url,
                json=payload,
                headers=self._headers(),
                timeout=timeout,
            ) as response:
                if response.status not in (200, 201, 202):
                    body = await response.text()
                    logger.warning(
                        f"Renderer rejected job {job_id}: status={response.status}, "
                        f"body={body[:500]}"
                    )
                    return ExecutionResult.failed(
                        f"Renderer returned HTTP {response.status}: {body[:500]}"
                    )

                data = await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise ExecutionError(
                f"Screenshot timed out after {config.timeout_ms}ms",
                code=ErrorCode.TIMEOUT_ERROR,
                status_code=504,
                context={"job_id": job_id, "timeout_ms": config.timeout_ms},
            ) from e

        except aiohttp.ClientError as e:
            raise ExecutionError(
                f"Renderer request failed: {e}",
                code=ErrorCode.EXTERNAL_SERVICE_ERROR,
                status_code=502,
                context={"job_id": job_id, "url": url},
            ) from e

        return self._parse_result(job_id, data)

    @staticmethod
    def _parse_result(job_id: str, data: Any) -> ExecutionResult:
        if not isinstance(data, dict):
            return ExecutionResult.failed(f"Unexpected renderer response: {data!r}"[:2000])

        error = data.get("error")
        try:
            result = ExecutionResult.model_validate(
                {
                    "status": data.get("status", ScreenshotStatus.COMPLETED.value),
                    "artifact_url": data.get("artifact_url"),
                    "error": str(error)[:2000] if error else None,
                }
            )
        except ValidationError as e:
            logger.warning(f"Unparseable renderer response for job {job_id}: {e}")
            return ExecutionResult.failed(f"Unparseable renderer response: {e}")

        logger.debug(f"Renderer answered job {job_id}: status={result.status.value}")
        return result

    async def close(self) -> None:
        """Close HTTP session."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None


__all__ = ["HTTPExecutionAdapter"]
