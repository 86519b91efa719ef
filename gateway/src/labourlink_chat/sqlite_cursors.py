from __future__ import annotations

from typing import Dict

from .identity import normalize_email
from .sqlite_backend import SQLiteBackend


class SQLiteReadCursorStore:
    """Durable read cursor store backed by SQLite."""

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    def mark_read(self, viewer_email: str, peer_email: str, read_at: int) -> int:
        if read_at < 0:
            raise ValueError("read_at must be non-negative")

        viewer = normalize_email(viewer_email)
        peer = normalize_email(peer_email)
        with self._backend.lock:
            self._backend.connection.execute(
                """
                INSERT INTO read_cursors (viewer_email, peer_email, last_read_at)
                VALUES (?, ?, ?)
                ON CONFLICT(viewer_email, peer_email) DO UPDATE SET last_read_at = CASE
                    WHEN excluded.last_read_at > read_cursors.last_read_at THEN excluded.last_read_at
                    ELSE read_cursors.last_read_at
                END
                """,
                (viewer, peer, int(read_at)),
            )
            row = self._backend.connection.execute(
                "SELECT last_read_at FROM read_cursors WHERE viewer_email=? AND peer_email=?",
                (viewer, peer),
            ).fetchone()
        return int(row[0]) if row else int(read_at)

    def last_read(self, viewer_email: str, peer_email: str) -> int:
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT last_read_at FROM read_cursors WHERE viewer_email=? AND peer_email=?",
                (normalize_email(viewer_email), normalize_email(peer_email)),
            ).fetchone()
        return int(row[0]) if row else 0

    def last_read_by_peer(self, viewer_email: str) -> Dict[str, int]:
        with self._backend.lock:
            rows = self._backend.connection.execute(
                "SELECT peer_email, last_read_at FROM read_cursors WHERE viewer_email=?",
                (normalize_email(viewer_email),),
            ).fetchall()
        return {row[0]: int(row[1]) for row in rows}
