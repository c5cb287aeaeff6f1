from __future__ import annotations

import re
from typing import Optional


# ESC or 8-bit CSI, optional intermediates, optional `n;n;...` params, one final char.
_ANSI_ESCAPE_RE = re.compile(
    r"[\x1b\x9b][\[()#;?]*(?:[0-9]{1,4}(?:;[0-9]{0,4})*)?[0-9A-ORZcf-nqry=><]"
)


def strip_ansi(text: Optional[str]) -> str:
    """
    Remove terminal control/escape sequences from a raw log fragment.

    Everything else (including newlines and carriage returns) is kept in order.
    Malformed sequences such as a bare ESC are left as-is.

    Removing one sequence can splice its neighbours into a new one
    (e.g. "\\x1b\\x1b[31m[0m"), so substitution repeats until nothing matches.
    That keeps the function idempotent.
    """
    if not text:
        return ""
    out = text
    while True:
        cleaned = _ANSI_ESCAPE_RE.sub("", out)
        if cleaned == out:
            return cleaned
        out = cleaned
