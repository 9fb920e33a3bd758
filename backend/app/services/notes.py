"""Append-only note logs kept on proposals and stages."""

from datetime import datetime
from typing import Optional


def append_note(existing: Optional[str], note: Optional[str], prefix: str = "") -> Optional[str]:
    """
    Append a timestamped entry to a running note log.

    Entries are separated by a blank line and formatted
    "[<ISO timestamp>] <prefix><note>". Empty notes leave the log as is.

    Example:
        >>> append_note(None, "Framing done")
        '[2026-03-01T10:00:00.123456] Framing done'
    """
    if not note or not note.strip():
        return existing
    entry = f"[{datetime.utcnow().isoformat()}] {prefix}{note.strip()}"
    if existing:
        return f"{existing}\n\n{entry}"
    return entry
