"""In-app notification records produced when a message is delivered."""

from __future__ import annotations

import json
import secrets
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Protocol

from .clock import NowFunc, now_ms
from .identity import normalize_email
from .sqlite_backend import SQLiteBackend

MESSAGE_RECEIVED = "message_received"


@dataclass(frozen=True)
class Notification:
    id: str
    recipient_email: str
    type: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    created_at: int = 0

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "recipientEmail": self.recipient_email,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "data": dict(self.data),
            "isRead": self.is_read,
            "createdAt": self.created_at,
        }


class Notifier(Protocol):
    def notify(
        self,
        recipient_email: str,
        type: str,
        title: str,
        body: str,
        data: Dict[str, Any],
    ) -> None: ...


def _new_id(created_at: int) -> str:
    return f"ntf_{created_at}_{secrets.token_hex(6)}"


class NotificationStore:
    def __init__(self) -> None:
        self._items: List[Notification] = []
        self._lock = threading.Lock()

    def add(self, notification: Notification) -> None:
        with self._lock:
            self._items.append(notification)

    def list_for(self, recipient_email: str, limit: int = 100) -> list[Notification]:
        """Return the newest notifications for ``recipient_email`` first."""

        recipient = normalize_email(recipient_email)
        with self._lock:
            mine = [item for item in self._items if item.recipient_email == recipient]
        mine.reverse()
        return mine[: max(limit, 0)]

    def mark_read(self, recipient_email: str, notification_id: str) -> bool:
        recipient = normalize_email(recipient_email)
        with self._lock:
            for index, item in enumerate(self._items):
                if item.id == notification_id and item.recipient_email == recipient:
                    self._items[index] = replace(item, is_read=True)
                    return True
        return False


class SQLiteNotificationStore:
    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    def add(self, notification: Notification) -> None:
        with self._backend.lock:
            self._backend.connection.execute(
                """
                INSERT INTO notifications (id, recipient_email, type, title, body, data_json, is_read, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.id,
                    notification.recipient_email,
                    notification.type,
                    notification.title,
                    notification.body,
                    json.dumps(notification.data),
                    int(notification.is_read),
                    notification.created_at,
                ),
            )

    def list_for(self, recipient_email: str, limit: int = 100) -> list[Notification]:
        with self._backend.lock:
            rows = self._backend.connection.execute(
                """
                SELECT id, recipient_email, type, title, body, data_json, is_read, created_at
                FROM notifications WHERE recipient_email=?
                ORDER BY created_at DESC, rowid DESC LIMIT ?
                """,
                (normalize_email(recipient_email), max(limit, 0)),
            ).fetchall()
        return [
            Notification(
                id=row[0],
                recipient_email=row[1],
                type=row[2],
                title=row[3],
                body=row[4],
                data=json.loads(row[5]),
                is_read=bool(row[6]),
                created_at=int(row[7]),
            )
            for row in rows
        ]

    def mark_read(self, recipient_email: str, notification_id: str) -> bool:
        with self._backend.lock:
            cursor = self._backend.connection.execute(
                "UPDATE notifications SET is_read=1 WHERE id=? AND recipient_email=?",
                (notification_id, normalize_email(recipient_email)),
            )
        return cursor.rowcount > 0


class InAppNotifier:
    """Notification collaborator that records an in-app notification."""

    def __init__(self, store: NotificationStore | SQLiteNotificationStore, *, now_func: NowFunc = now_ms) -> None:
        self.store = store
        self._now = now_func

    def notify(
        self,
        recipient_email: str,
        type: str,
        title: str,
        body: str,
        data: Dict[str, Any],
    ) -> None:
        created_at = self._now()
        self.store.add(
            Notification(
                id=_new_id(created_at),
                recipient_email=normalize_email(recipient_email),
                type=type,
                title=title,
                body=body,
                data=dict(data),
                created_at=created_at,
            )
        )
