from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .directory import UserDirectory, roles_may_message
from .errors import CrossRoleError, NotFoundError, ValidationError
from .identity import normalize_email, thread_id


@dataclass(frozen=True)
class Message:
    """An immutable chat message between exactly two users."""

    id: str
    from_email: str
    to_email: str
    text: str
    created_at: int

    @property
    def thread_id(self) -> str:
        return thread_id(self.from_email, self.to_email)

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "from": self.from_email,
            "to": self.to_email,
            "text": self.text,
            "createdAt": self.created_at,
        }


def make_message_id(created_at: int) -> str:
    return f"msg_{created_at}_{secrets.token_hex(6)}"


def prepare_append(from_email: str, to_email: str, text: str) -> Tuple[str, str, str]:
    """Normalize the participants and text of a message about to be appended."""

    sender = normalize_email(from_email)
    recipient = normalize_email(to_email)
    body = str(text or "").strip()
    if not body:
        raise ValidationError("Message is empty.")
    if not sender or not recipient:
        raise ValidationError("sender and recipient required")
    if sender == recipient:
        raise ValidationError("Cannot message yourself.")
    return sender, recipient, body


def check_roles(directory: Optional[UserDirectory], sender: str, recipient: str) -> None:
    """Reject pairs that are not one builder and one labourer.

    Skipped when the log was built without a directory.
    """

    if directory is None:
        return
    sender_record = directory.get(sender)
    if sender_record is None:
        raise NotFoundError("Sender not found.")
    recipient_record = directory.get(recipient)
    if recipient_record is None:
        raise NotFoundError("Recipient not found.")
    if not roles_may_message(sender_record.role, recipient_record.role):
        raise CrossRoleError("Builders can only chat with labourers (and vice versa).")


class MessageLog:
    """In-memory, append-only message log.

    ``created_at`` never decreases in append order, so insertion order is also
    timestamp order and ties keep their insertion order.
    """

    def __init__(self, directory: Optional[UserDirectory] = None) -> None:
        self._directory = directory
        self._messages: List[Message] = []
        self._by_user: Dict[str, List[Message]] = {}
        self._last_created_at = 0
        self._lock = threading.Lock()

    def append(self, from_email: str, to_email: str, text: str, created_at: int) -> Message:
        sender, recipient, body = prepare_append(from_email, to_email, text)
        check_roles(self._directory, sender, recipient)
        with self._lock:
            assigned = max(int(created_at), self._last_created_at)
            message = Message(
                id=make_message_id(assigned),
                from_email=sender,
                to_email=recipient,
                text=body,
                created_at=assigned,
            )
            self._messages.append(message)
            self._by_user.setdefault(sender, []).append(message)
            self._by_user.setdefault(recipient, []).append(message)
            self._last_created_at = assigned
        return message

    def list_between(self, a: str, b: str) -> list[Message]:
        """Return every message exchanged by ``a`` and ``b``, oldest first."""

        key = thread_id(a, b)
        with self._lock:
            touching = list(self._by_user.get(normalize_email(a), []))
        return [message for message in touching if message.thread_id == key]

    def list_for_user(self, email: str) -> list[Message]:
        """Return every message sent or received by ``email``, newest first."""

        with self._lock:
            touching = list(self._by_user.get(normalize_email(email), []))
        touching.reverse()
        return touching

    def __len__(self) -> int:
        return len(self._messages)
