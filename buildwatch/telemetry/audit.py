from __future__ import annotations

import json
import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class AuditLogger:
    """
    JSONL trail of session events (one record per line), keyed by a per-session correlation id.
    With no path configured every write is a no-op.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()
        if path:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    @property
    def enabled(self) -> bool:
        return bool(self.path)

    def new_correlation_id(self) -> str:
        return uuid.uuid4().hex

    def write(
        self,
        correlation_id: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        actor: str = "buildwatch",
        timestamp: Optional[str] = None,
    ) -> None:
        if not self.path:
            return
        record = {
            "ts": timestamp or datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
            "actor": actor,
            "event_type": event_type,
            "payload": payload,
        }
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
