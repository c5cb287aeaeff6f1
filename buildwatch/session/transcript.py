from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, List, Optional, Tuple

from buildwatch.models import LogLine

logger = logging.getLogger(__name__)


class LogTranscript:
    """
    Append-only, insertion-ordered buffer of sanitized log lines.

    Lines are never edited, removed, reordered or deduplicated. A fresh transcript
    is built for every session; there is no clear().
    """

    def __init__(self, *, on_append: Optional[Callable[[LogLine], None]] = None) -> None:
        self._lines: List[LogLine] = []
        self._lock = threading.Lock()
        self._on_append = on_append

    def append(self, text: str) -> LogLine:
        line = LogLine(text=text)
        with self._lock:
            self._lines.append(line)
        if self._on_append is not None:
            try:
                self._on_append(line)
            except Exception as e:  # noqa: BLE001
                # e.g. BrokenPipeError from a closed stdout.
                logger.warning("Transcript listener failed: %r", e)
        return line

    def snapshot(self) -> Tuple[LogLine, ...]:
        with self._lock:
            return tuple(self._lines)

    def text(self) -> str:
        return "\n".join(ln.text for ln in self.snapshot())

    @property
    def lines(self) -> List[str]:
        return [ln.text for ln in self.snapshot()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def __iter__(self) -> Iterator[LogLine]:
        return iter(self.snapshot())
