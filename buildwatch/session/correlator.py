from __future__ import annotations

import logging
from typing import Optional, Union

from buildwatch.api.client import BackendClient
from buildwatch.errors import BuildTriggerError
from buildwatch.session import status as st
from buildwatch.session.cancellation import CancellationToken
from buildwatch.session.status import JobStatusTracker
from buildwatch.session.transcript import LogTranscript
from buildwatch.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)


class BuildCorrelator:
    """
    Fires the single build-start request of a session and records the job id it returns.

    The request is issued right after IDENTIFY is sent, without waiting for any server reply, so its
    transcript lines interleave with streamed LOG_CHUNK/JOB_UPDATE lines in arrival order.
    """

    def __init__(
        self,
        *,
        client: BackendClient,
        transcript: LogTranscript,
        status: JobStatusTracker,
        audit: AuditLogger,
        correlation_id: str,
    ) -> None:
        self._client = client
        self._transcript = transcript
        self._status = status
        self._audit = audit
        self._correlation_id = correlation_id
        self._triggered = False
        self._job_id: Optional[Union[int, str]] = None

    @property
    def job_id(self) -> Optional[Union[int, str]]:
        return self._job_id

    @property
    def triggered(self) -> bool:
        return self._triggered

    async def trigger(self, project_id: Union[int, str], token: CancellationToken) -> Optional[Union[int, str]]:
        """
        Returns the job id on success, None on failure or if the session was torn down meanwhile.
        Raises BuildTriggerError only when called a second time.
        """
        if self._triggered:
            raise BuildTriggerError("build already triggered for this session")
        self._triggered = True

        try:
            job = await self._client.trigger_build(project_id)
        except BuildTriggerError as e:
            if token.cancelled:
                return None
            logger.warning("Build trigger failed for project %s: %s", project_id, e)
            self._status.update(st.ERROR)
            self._transcript.append(f">> Failed to trigger build: {e}")
            self._audit.write(self._correlation_id, "build.trigger_failed", {"project_id": project_id, "error": str(e)})
            return None

        if token.cancelled:
            return None
        self._job_id = job.id
        self._status.update(st.BUILD_STARTED)
        self._transcript.append(f">> Build Job Created: {job.id}")
        logger.info("Build job %s created for project %s", job.id, project_id)
        self._audit.write(self._correlation_id, "build.triggered", {"project_id": project_id, "job_id": job.id})
        return job.id
