from __future__ import annotations

import logging
import threading
from typing import Optional

from buildwatch.api.client import BackendClient
from buildwatch.errors import AnalysisError
from buildwatch.models import AnalysisResult
from buildwatch.session.cancellation import CancellationToken
from buildwatch.session.transcript import LogTranscript
from buildwatch.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)


class AnalysisRequester:
    """
    On-demand, single-flight analysis of the session transcript.

    A call made while another is pending returns None and changes nothing (no queueing).
    The result is either absent or a fully validated AnalysisResult from one response.
    """

    def __init__(
        self,
        *,
        client: BackendClient,
        transcript: LogTranscript,
        token: CancellationToken,
        audit: AuditLogger,
        correlation_id: str,
    ) -> None:
        self._client = client
        self._transcript = transcript
        self._token = token
        self._audit = audit
        self._correlation_id = correlation_id
        self._in_flight = threading.Lock()
        self._result: Optional[AnalysisResult] = None

    @property
    def result(self) -> Optional[AnalysisResult]:
        return self._result

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    async def request_analysis(self) -> Optional[AnalysisResult]:
        if self._token.cancelled:
            return None
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Analysis already in flight; ignoring request")
            return None
        try:
            self._result = None
            logs = self._transcript.text()
            try:
                res = await self._client.analyze_logs(logs)
            except AnalysisError as e:
                logger.warning("Analysis request failed: %s", e)
                self._audit.write(self._correlation_id, "analysis.failed", {"error": str(e)})
                return None
            if self._token.cancelled:
                return None
            self._result = res
            self._audit.write(self._correlation_id, "analysis.completed", res.model_dump(mode="json"))
            return res
        finally:
            self._in_flight.release()
