from __future__ import annotations

import threading
from typing import Dict, Tuple

from .identity import normalize_email


class ReadCursorStore:
    """Tracks per-(viewer, peer) "last read at" timestamps.

    Cursors only move forward: a late write carrying an older timestamp is
    merged with ``max`` so concurrent devices never un-read messages.
    """

    def __init__(self) -> None:
        self._positions: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def mark_read(self, viewer_email: str, peer_email: str, read_at: int) -> int:
        """Advance the cursor to ``read_at`` and return the stored value."""

        if read_at < 0:
            raise ValueError("read_at must be non-negative")
        key = (normalize_email(viewer_email), normalize_email(peer_email))
        with self._lock:
            current = self._positions.get(key, 0)
            last_read_at = max(current, int(read_at))
            self._positions[key] = last_read_at
        return last_read_at

    def last_read(self, viewer_email: str, peer_email: str) -> int:
        key = (normalize_email(viewer_email), normalize_email(peer_email))
        with self._lock:
            return self._positions.get(key, 0)

    def last_read_by_peer(self, viewer_email: str) -> Dict[str, int]:
        viewer = normalize_email(viewer_email)
        with self._lock:
            return {peer: value for (owner, peer), value in self._positions.items() if owner == viewer}
