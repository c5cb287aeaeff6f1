from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Union

import httpx
from pydantic import ValidationError

from buildwatch.errors import AnalysisError, BuildTriggerError
from buildwatch.models import AnalysisResult, BuildJob, UIActionCommand


_TRANSIENT_ERRORS = (
    httpx.ReadError,
    httpx.RemoteProtocolError,
    httpx.ProtocolError,
    httpx.ConnectError,
    httpx.TimeoutException,
)


@dataclass(frozen=True)
class BackendClient:
    """
    Request/response side of the build backend.

    Endpoints (relative to api_base_url):
    - POST /projects/{id}/build        -> {id, ...}
    - POST /projects/{id}/ai-command   -> {id, ...}
    - POST /ai/analyze                 -> {confidence, analysis, suggestion}

    Designed to be mockable in tests (httpx transport override).
    """

    api_base_url: str = "http://localhost:8080/api"
    timeout_s: float = 15.0
    analysis_timeout_s: float = 60.0
    max_retries: int = 3
    retry_backoff_s: float = 0.8
    transport: httpx.AsyncBaseTransport | None = None

    def _url(self, path: str) -> str:
        return f"{self.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout_s, transport=self.transport)

    async def trigger_build(self, project_id: Union[int, str]) -> BuildJob:
        # Creates a job server-side: never retried.
        url = self._url(f"projects/{project_id}/build")
        try:
            async with self._client(self.timeout_s) as c:
                r = await c.post(url)
        except Exception as e:  # noqa: BLE001
            # httpx.InvalidURL and raw transport errors are not httpx.HTTPError.
            raise BuildTriggerError(f"{type(e).__name__}: {e}") from e
        if r.status_code >= 400:
            raise BuildTriggerError(f"build_http_{r.status_code}: {r.text[:500]}")
        return self._parse_job(r, BuildTriggerError)

    async def dispatch_command(self, project_id: Union[int, str], command: UIActionCommand) -> BuildJob:
        url = self._url(f"projects/{project_id}/ai-command")
        try:
            async with self._client(self.timeout_s) as c:
                r = await c.post(url, json=command.model_dump(mode="json"))
        except Exception as e:  # noqa: BLE001
            raise BuildTriggerError(f"{type(e).__name__}: {e}") from e
        if r.status_code >= 400:
            raise BuildTriggerError(f"command_http_{r.status_code}: {r.text[:500]}")
        return self._parse_job(r, BuildTriggerError)

    async def analyze_logs(self, logs: str) -> AnalysisResult:
        url = self._url("ai/analyze")
        payload: Dict[str, Any] = {"logs": logs}

        attempts = max(1, int(self.max_retries))
        for attempt in range(1, attempts + 1):
            try:
                async with self._client(self.analysis_timeout_s) as c:
                    r = await c.post(url, json=payload)
                break
            except _TRANSIENT_ERRORS as e:
                # Read-only request, safe to repeat.
                if attempt < attempts:
                    await asyncio.sleep(self.retry_backoff_s * (2 ** (attempt - 1)))
                    continue
                raise AnalysisError(f"analysis_transient_error after {attempt} attempts: {e}") from e
            except Exception as e:  # noqa: BLE001
                raise AnalysisError(f"{type(e).__name__}: {e}") from e

        if r.status_code != 200:
            raise AnalysisError(f"analysis_http_{r.status_code}: {r.text[:500]}")
        try:
            data = r.json()
        except ValueError as e:
            raise AnalysisError(f"analysis_response_parse_error: {r.text[:500]}") from e
        try:
            return AnalysisResult.model_validate(data)
        except ValidationError as e:
            raise AnalysisError(f"analysis_response_invalid: {data}") from e

    @staticmethod
    def _parse_job(r: httpx.Response, err_type: type[Exception]) -> BuildJob:
        try:
            data = r.json()
        except ValueError as e:
            raise err_type(f"job_response_parse_error: {r.text[:500]}") from e
        try:
            return BuildJob.model_validate(data)
        except ValidationError as e:
            raise err_type(f"job_response_invalid: {data}") from e
