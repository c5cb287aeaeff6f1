from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    identify = "IDENTIFY"
    log_chunk = "LOG_CHUNK"
    job_update = "JOB_UPDATE"
    ai_stage_update = "AI_STAGE_UPDATE"


class Role(str, Enum):
    agent = "AGENT"
    client = "CLIENT"


class ConnectionState(str, Enum):
    idle = "idle"
    connecting = "connecting"
    connected = "connected"
    identified = "identified"
    error = "error"
    closed = "closed"


# ERROR and CLOSED are terminal: recovery means building a new session.
VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.idle: {ConnectionState.connecting, ConnectionState.error, ConnectionState.closed},
    ConnectionState.connecting: {ConnectionState.connected, ConnectionState.error, ConnectionState.closed},
    ConnectionState.connected: {ConnectionState.identified, ConnectionState.error, ConnectionState.closed},
    ConnectionState.identified: {ConnectionState.error, ConnectionState.closed},
    ConnectionState.error: set(),
    ConnectionState.closed: set(),
}

TERMINAL_STATES = frozenset({ConnectionState.error, ConnectionState.closed})


class Project(BaseModel):
    """
    Caller-owned project identity. The session references it, never mutates it.
    """

    model_config = ConfigDict(frozen=True)

    id: Union[int, str]
    name: str = ""


class LogLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str


class BuildJob(BaseModel):
    """
    Job record returned by the build trigger and command dispatch endpoints.
    Only `id` is guaranteed; the rest depends on the backend build.
    """

    model_config = ConfigDict(extra="ignore")

    id: Union[int, str]
    project_id: Optional[Union[int, str]] = None
    type: Optional[str] = None
    status: Optional[str] = None


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    confidence: float = Field(..., ge=0, le=100)
    analysis: str
    suggestion: str


class IdentifyPayload(BaseModel):
    project_id: Union[int, str]
    role: Role = Role.client


class LogChunkPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chunk: Optional[str] = None


class JobUpdatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    job_id: Optional[Union[int, str]] = None
    result: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status_as_text(cls, v: Any) -> Any:
        # Displayed verbatim; numeric codes are kept as their text form.
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class AIStagePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stage: str
    message: Optional[str] = None
    job_id: Optional[Union[int, str]] = None


class ChannelMessage(BaseModel):
    """
    Envelope for every frame on the real-time channel: `{type, payload}`.
    `type` stays a plain string so unknown types can be reported, not rejected at parse time.
    """

    type: str
    payload: Optional[Dict[str, Any]] = None


class UIActionCommand(BaseModel):
    type: str = "UI_ACTION"
    action: str
    target: str
    value: str = ""
