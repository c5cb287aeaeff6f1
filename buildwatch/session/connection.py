from __future__ import annotations

import asyncio
import json
import logging
from typing import Callable, Optional, Set, Union

from pydantic import ValidationError

from buildwatch.api.client import BackendClient
from buildwatch.channel import Channel, ChannelClosed, ChannelFactory
from buildwatch.errors import InvalidTransitionError, ProtocolError, TransportError
from buildwatch.models import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    AIStagePayload,
    AnalysisResult,
    ChannelMessage,
    ConnectionState,
    EventType,
    IdentifyPayload,
    JobUpdatePayload,
    LogChunkPayload,
    LogLine,
    Project,
    Role,
)
from buildwatch.parsers.ansi import strip_ansi
from buildwatch.session import status as st
from buildwatch.session.analysis import AnalysisRequester
from buildwatch.session.cancellation import CancellationToken
from buildwatch.session.correlator import BuildCorrelator
from buildwatch.session.status import JobStatusTracker
from buildwatch.session.transcript import LogTranscript
from buildwatch.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)


def parse_channel_message(raw: Union[str, bytes]) -> ChannelMessage:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ProtocolError(f"unparseable frame: {raw[:200]!r}") from e
    try:
        return ChannelMessage.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"frame is not a {{type, payload}} record: {raw[:200]!r}") from e


class SessionConnection:
    """
    One live build session for one project.

    Lifecycle: IDLE -> CONNECTING -> CONNECTED -> IDENTIFIED -> (ERROR | CLOSED).
    ERROR and CLOSED are terminal; a new session is needed to watch again.

    Two cancellation contexts are kept:
    - `token` lives until close() (the view is left). Analysis runs under it.
    - the stream token is a child of it that is also cancelled when the channel reaches a terminal
      state, so nothing touches the transcript or status after ERROR/CLOSED.
    """

    def __init__(
        self,
        project: Project,
        *,
        client: BackendClient,
        channel_factory: ChannelFactory,
        audit: Optional[AuditLogger] = None,
        on_line: Optional[Callable[[LogLine], None]] = None,
    ) -> None:
        self.project = project
        self.token = CancellationToken()
        self._stream_token = self.token.child()
        self.transcript = LogTranscript(on_append=on_line)
        self.status = JobStatusTracker()
        self._audit = audit or AuditLogger(None)
        self.correlation_id = self._audit.new_correlation_id()
        self._channel_factory = channel_factory
        self._channel: Optional[Channel] = None
        self._state = ConnectionState.idle
        self._tasks: Set[asyncio.Task] = set()

        self.correlator = BuildCorrelator(
            client=client,
            transcript=self.transcript,
            status=self.status,
            audit=self._audit,
            correlation_id=self.correlation_id,
        )
        self.analysis = AnalysisRequester(
            client=client,
            transcript=self.transcript,
            token=self.token,
            audit=self._audit,
            correlation_id=self.correlation_id,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def job_id(self) -> Optional[Union[int, str]]:
        return self.correlator.job_id

    @property
    def job_status(self) -> str:
        return self.status.current

    @property
    def analysis_result(self) -> Optional[AnalysisResult]:
        return self.analysis.result

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def _transition(self, target: ConnectionState) -> None:
        current = self._state
        if target not in VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError(
                f"Cannot transition session from {current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in VALID_TRANSITIONS.get(current, set()))}"
            )
        self._state = target
        logger.debug("Session %s: %s -> %s", self.correlation_id, current.value, target.value)
        self._audit.write(self.correlation_id, "session.state", {"from": current.value, "to": target.value})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Open the channel, identify, and fire the build trigger without waiting for a reply.
        Transport failures end in ERROR; nothing is raised.
        """
        self._transition(ConnectionState.connecting)
        self.transcript.append(">> Initializing connection...")
        self.status.update(st.CONNECTING)
        self._audit.write(self.correlation_id, "session.opened", {"project_id": self.project.id, "project_name": self.project.name})

        try:
            channel = await self._channel_factory()
        except TransportError as e:
            self._on_transport_error(e)
            return

        if self.token.cancelled:
            # Left the view while the handshake was in progress.
            await self._close_channel(channel)
            return

        self._channel = channel
        self._transition(ConnectionState.connected)
        self.status.update(st.CONNECTED)
        self.transcript.append(">> Connected to Real-time Gateway.")
        self.transcript.append(">> Waiting for Agent...")

        identify = ChannelMessage(
            type=EventType.identify.value,
            payload=IdentifyPayload(project_id=self.project.id, role=Role.client).model_dump(mode="json"),
        )
        try:
            await channel.send(identify.model_dump_json())
        except ChannelClosed as e:
            self._on_channel_closed(e)
            return
        except TransportError as e:
            self._on_transport_error(e)
            return
        if self._stream_token.cancelled:
            return
        self._transition(ConnectionState.identified)

        self._spawn(self.correlator.trigger(self.project.id, self._stream_token))

    async def run(self) -> ConnectionState:
        """Start the session and process inbound frames until the channel ends. Returns the final state."""
        if self._state == ConnectionState.idle:
            await self.start()
        if self._channel is not None and not self.is_terminal:
            await self._read_loop(self._channel)
        return self._state

    async def _read_loop(self, channel: Channel) -> None:
        while self._stream_token.live:
            try:
                raw = await channel.recv()
            except ChannelClosed as e:
                self._on_channel_closed(e)
                return
            except TransportError as e:
                self._on_transport_error(e)
                return
            self.handle_message(raw)

    async def close(self) -> None:
        """
        Tear the session down: every later callback becomes a no-op, pending work is cancelled,
        and the channel is closed. Safe to call more than once.
        """
        if self.token.cancelled:
            return
        self.token.cancel()
        if not self.is_terminal:
            self._transition(ConnectionState.closed)
        for t in list(self._tasks):
            t.cancel()
        if self._channel is not None:
            await self._close_channel(self._channel)

    async def wait_pending(self) -> None:
        """Wait for background work (the build trigger) to settle."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def request_analysis(self) -> Optional[AnalysisResult]:
        return await self.analysis.request_analysis()

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def handle_message(self, raw: Union[str, bytes]) -> None:
        """Dispatch one inbound frame. Bad frames are logged and dropped."""
        if self._stream_token.cancelled:
            return
        if self._state not in (ConnectionState.connected, ConnectionState.identified):
            logger.debug("Dropping frame received in state %s", self._state.value)
            return
        try:
            self._dispatch(parse_channel_message(raw))
        except ProtocolError as e:
            logger.warning("Dropping inbound frame: %s", e)
            self._audit.write(self.correlation_id, "protocol.dropped", {"error": str(e)})

    def _dispatch(self, msg: ChannelMessage) -> None:
        payload = msg.payload or {}
        try:
            if msg.type == EventType.log_chunk.value:
                chunk = LogChunkPayload.model_validate(payload)
                self.transcript.append(strip_ansi(chunk.chunk))
            elif msg.type == EventType.job_update.value:
                update = JobUpdatePayload.model_validate(payload)
                if update.job_id and self.job_id is not None and str(update.job_id) != str(self.job_id):
                    logger.debug("JOB_UPDATE for job %s while tracking job %s", update.job_id, self.job_id)
                self.status.update(update.status)
                self.transcript.append(f">> Job Status: {update.status}")
            elif msg.type == EventType.ai_stage_update.value:
                stage = AIStagePayload.model_validate(payload)
                line = f">> AI Stage: {stage.stage}"
                if stage.message:
                    line += f" - {stage.message}"
                self.transcript.append(line)
            else:
                raise ProtocolError(f"unknown message type: {msg.type!r}")
        except ValidationError as e:
            raise ProtocolError(f"invalid {msg.type} payload: {payload!r}") from e

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _on_transport_error(self, err: TransportError) -> None:
        if self._stream_token.cancelled:
            return
        logger.warning("Session %s transport error: %s", self.correlation_id, err)
        self.transcript.append(">> Connection Error")
        self.status.update(st.ERROR)
        self._transition(ConnectionState.error)
        self._stream_token.cancel()

    def _on_channel_closed(self, err: ChannelClosed) -> None:
        if self._stream_token.cancelled:
            return
        logger.info("Session %s channel closed (code=%s)", self.correlation_id, err.code)
        self.transcript.append(">> Disconnected")
        self._transition(ConnectionState.closed)
        self._stream_token.cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._log_task_failure)
        return task

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session %s background task failed: %r", self.correlation_id, exc, exc_info=exc)

    async def _close_channel(self, channel: Channel) -> None:
        try:
            await channel.close()
        except Exception as e:  # noqa: BLE001
            # Teardown is best-effort; the session is already dead.
            logger.debug("Error while closing channel: %s", e)
