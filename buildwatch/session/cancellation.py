from __future__ import annotations

import threading
from typing import Optional


class CancellationToken:
    """
    Liveness flag owned by one session and handed to every pending operation.

    Continuations check `cancelled` before touching shared state; once a session is torn down
    their results are dropped. A child token is cancelled with its parent, or on its own.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._cancelled = threading.Event()
        self._parent = parent

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def live(self) -> bool:
        return not self.cancelled
