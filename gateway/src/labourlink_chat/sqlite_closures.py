from __future__ import annotations

from typing import Dict

from .identity import normalize_email
from .sqlite_backend import SQLiteBackend

_UPSERT = """
    INSERT INTO thread_closures (owner_email, peer_email, closed_at)
    VALUES (?, ?, ?)
    ON CONFLICT(owner_email, peer_email) DO UPDATE SET closed_at = CASE
        WHEN excluded.closed_at > thread_closures.closed_at THEN excluded.closed_at
        ELSE thread_closures.closed_at
    END
"""


class SQLiteThreadClosureStore:
    """Durable closure boundaries backed by SQLite."""

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    def close(self, owner_email: str, peer_email: str, closed_at: int) -> int:
        if closed_at < 0:
            raise ValueError("closed_at must be non-negative")

        owner = normalize_email(owner_email)
        peer = normalize_email(peer_email)
        conn = self._backend.connection
        with self._backend.lock:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                row = cursor.execute(
                    """
                    SELECT MAX(closed_at) FROM thread_closures
                    WHERE (owner_email=? AND peer_email=?) OR (owner_email=? AND peer_email=?)
                    """,
                    (owner, peer, peer, owner),
                ).fetchone()
                current = int(row[0]) if row and row[0] is not None else 0
                boundary = max(int(closed_at), current)
                cursor.execute(_UPSERT, (owner, peer, boundary))
                cursor.execute(_UPSERT, (peer, owner, boundary))
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()
        return boundary

    def closed_at(self, owner_email: str, peer_email: str) -> int:
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT closed_at FROM thread_closures WHERE owner_email=? AND peer_email=?",
                (normalize_email(owner_email), normalize_email(peer_email)),
            ).fetchone()
        return int(row[0]) if row else 0

    def closed_at_by_peer(self, viewer_email: str) -> Dict[str, int]:
        viewer = normalize_email(viewer_email)
        with self._backend.lock:
            rows = self._backend.connection.execute(
                """
                SELECT CASE WHEN owner_email = ? THEN peer_email ELSE owner_email END AS other,
                       MAX(closed_at)
                FROM thread_closures
                WHERE owner_email = ? OR peer_email = ?
                GROUP BY other
                """,
                (viewer, viewer, viewer),
            ).fetchall()
        return {row[0]: int(row[1]) for row in rows}
