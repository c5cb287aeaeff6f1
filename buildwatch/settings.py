from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BUILDWATCH_", extra="ignore")

    # Request/response API of the build backend (build trigger, commands, analysis).
    api_base_url: str = "http://localhost:8080/api"
    # Long-lived duplex channel carrying LOG_CHUNK / JOB_UPDATE frames.
    ws_url: str = "ws://localhost:8080/ws"

    request_timeout_s: float = 15.0
    # Analysis can be slow on the backend side (model call), keep a separate budget.
    analysis_timeout_s: float = 60.0
    analysis_max_retries: int = 3
    analysis_retry_backoff_s: float = 0.8

    # Hardening: the observed protocol has no open timeout, websockets defaults to 10s.
    open_timeout_s: float | None = 10.0

    # JSONL audit trail of session events. Unset disables it.
    audit_log_path: str | None = None

    log_level: str = "INFO"
