from __future__ import annotations

from typing import Optional, Sequence

from .directory import UserDirectory
from .identity import normalize_email
from .message_log import Message, check_roles, make_message_id, prepare_append
from .sqlite_backend import SQLiteBackend

_COLUMNS = "id, from_email, to_email, text, created_at"


def _row_to_message(row: Sequence) -> Message:
    return Message(
        id=row[0],
        from_email=row[1],
        to_email=row[2],
        text=row[3],
        created_at=int(row[4]),
    )


class SQLiteMessageLog:
    """Durable message log backed by SQLite."""

    def __init__(self, backend: SQLiteBackend, directory: Optional[UserDirectory] = None) -> None:
        self._backend = backend
        self._directory = directory

    def append(self, from_email: str, to_email: str, text: str, created_at: int) -> Message:
        """Insert one message atomically, keeping ``created_at`` non-decreasing."""

        sender, recipient, body = prepare_append(from_email, to_email, text)
        check_roles(self._directory, sender, recipient)
        conn = self._backend.connection
        with self._backend.lock:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                row = cursor.execute("SELECT MAX(created_at) FROM messages").fetchone()
                last_created_at = int(row[0]) if row and row[0] is not None else 0
                assigned = max(int(created_at), last_created_at)
                message = Message(
                    id=make_message_id(assigned),
                    from_email=sender,
                    to_email=recipient,
                    text=body,
                    created_at=assigned,
                )
                cursor.execute(
                    f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (message.id, message.from_email, message.to_email, message.text, message.created_at),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()
        return message

    def list_between(self, a: str, b: str) -> list[Message]:
        first = normalize_email(a)
        second = normalize_email(b)
        with self._backend.lock:
            rows = self._backend.connection.execute(
                f"""
                SELECT {_COLUMNS} FROM messages
                WHERE (from_email = ? AND to_email = ?) OR (from_email = ? AND to_email = ?)
                ORDER BY created_at ASC, rowid ASC
                """,
                (first, second, second, first),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def list_for_user(self, email: str) -> list[Message]:
        user = normalize_email(email)
        with self._backend.lock:
            rows = self._backend.connection.execute(
                f"""
                SELECT {_COLUMNS} FROM messages
                WHERE from_email = ? OR to_email = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (user, user),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def __len__(self) -> int:
        with self._backend.lock:
            row = self._backend.connection.execute("SELECT COUNT(*) FROM messages").fetchone()
        return int(row[0])
