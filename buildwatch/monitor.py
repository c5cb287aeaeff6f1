from __future__ import annotations

import logging
from typing import Callable, Optional

from buildwatch.api.client import BackendClient
from buildwatch.channel import ChannelFactory, websocket_factory
from buildwatch.models import BuildJob, LogLine, Project, UIActionCommand
from buildwatch.session.connection import SessionConnection
from buildwatch.settings import Settings
from buildwatch.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)


def client_from_settings(settings: Settings) -> BackendClient:
    return BackendClient(
        api_base_url=settings.api_base_url,
        timeout_s=settings.request_timeout_s,
        analysis_timeout_s=settings.analysis_timeout_s,
        max_retries=settings.analysis_max_retries,
        retry_backoff_s=settings.analysis_retry_backoff_s,
    )


class BuildMonitor:
    """
    View-level owner of live build sessions: at most one session is open at a time.

    Re-entering (open() again, same or other project) tears the previous session down first,
    so its late callbacks can never reach the new transcript.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: BackendClient | None = None,
        channel_factory: ChannelFactory | None = None,
        audit: AuditLogger | None = None,
        on_line: Optional[Callable[[LogLine], None]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.client = client or client_from_settings(self.settings)
        self._channel_factory = channel_factory or websocket_factory(
            self.settings.ws_url, open_timeout=self.settings.open_timeout_s
        )
        self.audit = audit or AuditLogger(self.settings.audit_log_path)
        self._on_line = on_line
        self._current: Optional[SessionConnection] = None

    @property
    def current(self) -> Optional[SessionConnection]:
        return self._current

    async def open(self, project: Project) -> SessionConnection:
        """Tear down any active session, then create and start a new one for `project`."""
        await self.leave()
        session = SessionConnection(
            project,
            client=self.client,
            channel_factory=self._channel_factory,
            audit=self.audit,
            on_line=self._on_line,
        )
        self._current = session
        await session.start()
        return session

    async def watch(self, project: Project) -> SessionConnection:
        """open() and then stream until the channel ends."""
        session = await self.open(project)
        await session.run()
        await session.wait_pending()
        return session

    async def leave(self) -> None:
        session, self._current = self._current, None
        if session is not None:
            await session.close()

    async def dispatch_command(self, project: Project, *, action: str, target: str, value: str = "") -> BuildJob:
        """Send a remote UI_ACTION command for `project`. Raises BuildTriggerError on failure."""
        cmd = UIActionCommand(action=action, target=target, value=value)
        job = await self.client.dispatch_command(project.id, cmd)
        logger.info("Command %s -> %s dispatched as job %s", action, target, job.id)
        self.audit.write(
            self.audit.new_correlation_id(),
            "command.dispatched",
            {"project_id": project.id, "command": cmd.model_dump(mode="json"), "job_id": job.id},
        )
        return job
