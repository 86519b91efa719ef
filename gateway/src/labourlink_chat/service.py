from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator

import structlog

from .clock import NowFunc, now_ms
from .directory import UserDirectory, UserRecord, roles_may_message
from .errors import CrossRoleError, NotFoundError, StoreUnavailableError, ValidationError
from .identity import require_email, thread_id
from .message_log import Message
from .notifications import MESSAGE_RECEIVED, Notifier
from .projector import ACTIVE, MODES, DerivedThread, ThreadProjector
from .typing_tracker import TypingStatus, TypingTracker

logger = structlog.get_logger()

NOTIFICATION_TITLE = "New message"
PREVIEW_CHARS = 80


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_CHARS:
        return text
    return text[: PREVIEW_CHARS - 3] + "..."


@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.DatabaseError as exc:
        raise StoreUnavailableError(str(exc)) from exc


class MessagingService:
    """Public messaging contract over the log, overlay stores and collaborators."""

    def __init__(
        self,
        *,
        log,
        cursors,
        closures,
        typing: TypingTracker,
        directory: UserDirectory,
        notifier: Notifier | None = None,
        now_func: NowFunc = now_ms,
    ) -> None:
        self.log = log
        self.cursors = cursors
        self.closures = closures
        self.typing = typing
        self.directory = directory
        self.notifier = notifier
        self.projector = ThreadProjector(log, cursors, closures)
        self._now = now_func

    def send_message(self, from_email: str, to_email: str, text: str) -> Message:
        sender_email = require_email(from_email, "fromEmail")
        recipient_email = require_email(to_email, "toEmail")
        body = str(text or "").strip()
        if not body:
            raise ValidationError("Message is empty.")
        if sender_email == recipient_email:
            raise ValidationError("Cannot message yourself.")

        sender = self._require_user(sender_email, "Sender not found.")
        recipient = self._require_user(recipient_email, "Recipient not found.")
        if not roles_may_message(sender.role, recipient.role):
            raise CrossRoleError("Builders can only chat with labourers (and vice versa).")

        with _store_errors():
            message = self.log.append(sender.email, recipient.email, body, self._now())
        self.typing.set_typing(sender.email, recipient.email, False)
        logger.info(
            "message_sent",
            message_id=message.id,
            thread_id=message.thread_id,
            created_at=message.created_at,
        )
        self._dispatch_notification(sender, recipient, message)
        return message

    def get_conversation(self, viewer_email: str, peer_email: str) -> list[Message]:
        viewer, peer = self._pair(viewer_email, peer_email)
        with _store_errors():
            messages = self.log.list_between(viewer, peer)
        return sorted(messages, key=lambda message: message.created_at)

    def list_threads(self, viewer_email: str, mode: str = ACTIVE) -> list[DerivedThread]:
        viewer = require_email(viewer_email, "viewer")
        if mode not in MODES:
            raise ValidationError(f"view must be one of {', '.join(MODES)}")
        try:
            with _store_errors():
                threads = self.projector.project(viewer, mode)
        except StoreUnavailableError as exc:
            logger.warning("thread_list_degraded", mode=mode, error=str(exc))
            return []
        return [replace(thread, peer_name=self._display_name(thread.peer_email)) for thread in threads]

    def set_typing(self, from_email: str, to_email: str, is_typing: bool) -> None:
        sender, recipient = self._pair(from_email, to_email)
        self._require_user(recipient, "Recipient not found.")
        self.typing.set_typing(sender, recipient, bool(is_typing))

    def get_typing(self, viewer_email: str, peer_email: str) -> TypingStatus:
        viewer, peer = self._pair(viewer_email, peer_email)
        try:
            with _store_errors():
                return self.typing.get_typing(viewer, peer)
        except StoreUnavailableError as exc:
            logger.warning("typing_status_degraded", error=str(exc))
            return TypingStatus()

    def mark_read(self, viewer_email: str, peer_email: str) -> int:
        viewer, peer = self._pair(viewer_email, peer_email)
        self._require_user(peer, "Peer not found.")
        with _store_errors():
            return self.cursors.mark_read(viewer, peer, self._now())

    def close_thread(self, owner_email: str, peer_email: str) -> int:
        owner, peer = self._pair(owner_email, peer_email)
        self._require_user(peer, "Peer not found.")
        with _store_errors():
            closed_at = self.closures.close(owner, peer, self._now())
        logger.info("thread_closed", thread_id=thread_id(owner, peer), closed_at=closed_at)
        return closed_at

    def _pair(self, self_email: str, peer_email: str) -> tuple[str, str]:
        me = require_email(self_email, "viewer")
        peer = require_email(peer_email, "peerEmail")
        if me == peer:
            raise ValidationError("Cannot chat with yourself.")
        return me, peer

    def _require_user(self, email: str, message: str) -> UserRecord:
        user = self.directory.get(email)
        if user is None:
            raise NotFoundError(message)
        return user

    def _display_name(self, email: str) -> str:
        user = self.directory.get(email)
        return user.name if user is not None else email

    def _dispatch_notification(self, sender: UserRecord, recipient: UserRecord, message: Message) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(
                recipient.email,
                MESSAGE_RECEIVED,
                NOTIFICATION_TITLE,
                f"{sender.name}: {_preview(message.text)}",
                {"peerEmail": sender.email, "threadId": message.thread_id, "messageId": message.id},
            )
        except Exception as exc:
            # Delivery is best effort; the message is already stored.
            logger.warning("notification_dispatch_failed", message_id=message.id, error=str(exc))
