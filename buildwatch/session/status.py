from __future__ import annotations

import threading

CONNECTING = "Connecting..."
CONNECTED = "Connected"
BUILD_STARTED = "Build Started"
ERROR = "Error"


class JobStatusTracker:
    """
    Single authoritative status label for the session's build.

    Last write wins: backend updates are assumed monotonic in the backend's own timeline,
    so nothing here reorders or rejects them.
    """

    def __init__(self, initial: str = CONNECTING) -> None:
        self._current = initial
        self._lock = threading.Lock()

    @property
    def current(self) -> str:
        with self._lock:
            return self._current

    def update(self, label: str) -> None:
        with self._lock:
            self._current = str(label)
