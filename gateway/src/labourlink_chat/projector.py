"""Derives per-viewer thread summaries from the message log and overlay stores.

Nothing here is persisted. Every call rebuilds the view from three sources:

* the append-only message log (source of truth),
* closure boundaries, one per counterpart (max over both key columns),
* read cursors, one per counterpart.

Active mode keeps messages strictly newer than the closure boundary, so any
new message from either side reopens a closed thread for both participants.
History mode lists every counterpart that was *ever* closed; its summary is
the newest message when that message is newer than the boundary, otherwise a
``"Chat closed"`` placeholder stamped with the boundary. A reopened thread is
therefore listed in both modes at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Protocol

from .errors import ValidationError
from .identity import normalize_email, peer_of, thread_id
from .message_log import Message

ACTIVE = "active"
HISTORY = "history"
MODES = (ACTIVE, HISTORY)
CLOSED_PLACEHOLDER_TEXT = "Chat closed"


@dataclass(frozen=True)
class DerivedThread:
    thread_id: str
    peer_email: str
    last_message_text: str
    last_message_at: int
    unread_count: int = 0
    peer_name: str = ""

    def to_wire(self) -> dict:
        return {
            "threadId": self.thread_id,
            "peerEmail": self.peer_email,
            "peerName": self.peer_name or self.peer_email,
            "lastMessageText": self.last_message_text,
            "lastMessageAt": self.last_message_at,
            "unreadCount": self.unread_count,
        }


class _Log(Protocol):
    def list_for_user(self, email: str) -> list[Message]: ...


class _Cursors(Protocol):
    def last_read_by_peer(self, viewer_email: str) -> Dict[str, int]: ...


class _Closures(Protocol):
    def closed_at_by_peer(self, viewer_email: str) -> Dict[str, int]: ...


@dataclass
class _PeerAccumulator:
    latest: Message
    unread: int = 0


class ThreadProjector:
    def __init__(self, log: _Log, cursors: _Cursors, closures: _Closures) -> None:
        self._log = log
        self._cursors = cursors
        self._closures = closures

    def project(self, viewer_email: str, mode: str = ACTIVE) -> list[DerivedThread]:
        if mode not in MODES:
            raise ValidationError(f"view must be one of {', '.join(MODES)}")

        viewer = normalize_email(viewer_email)
        closed_by_peer = self._closures.closed_at_by_peer(viewer)
        messages = self._log.list_for_user(viewer)

        if mode == ACTIVE:
            last_read_by_peer = self._cursors.last_read_by_peer(viewer)
            threads = self._project_active(viewer, messages, closed_by_peer, last_read_by_peer)
        else:
            threads = self._project_history(viewer, messages, closed_by_peer)

        threads.sort(key=lambda thread: (-thread.last_message_at, thread.peer_email))
        return threads

    @staticmethod
    def _project_active(
        viewer: str,
        messages: Iterable[Message],
        closed_by_peer: Dict[str, int],
        last_read_by_peer: Dict[str, int],
    ) -> list[DerivedThread]:
        accumulators: Dict[str, _PeerAccumulator] = {}
        for message in messages:
            peer = peer_of(viewer, message.from_email, message.to_email)
            if message.created_at <= closed_by_peer.get(peer, 0):
                continue
            acc = accumulators.get(peer)
            if acc is None:
                # Input is newest first, so the first survivor is the summary.
                acc = accumulators[peer] = _PeerAccumulator(latest=message)
            if message.to_email == viewer and message.created_at > last_read_by_peer.get(peer, 0):
                acc.unread += 1

        return [
            DerivedThread(
                thread_id=thread_id(viewer, peer),
                peer_email=peer,
                last_message_text=acc.latest.text,
                last_message_at=acc.latest.created_at,
                unread_count=acc.unread,
            )
            for peer, acc in accumulators.items()
        ]

    @staticmethod
    def _project_history(
        viewer: str,
        messages: Iterable[Message],
        closed_by_peer: Dict[str, int],
    ) -> list[DerivedThread]:
        latest_by_peer: Dict[str, Message] = {}
        for message in messages:
            peer = peer_of(viewer, message.from_email, message.to_email)
            if closed_by_peer.get(peer, 0) <= 0 or peer in latest_by_peer:
                continue
            latest_by_peer[peer] = message

        threads = []
        for peer, closed_at in closed_by_peer.items():
            if closed_at <= 0:
                continue
            latest = latest_by_peer.get(peer)
            if latest is not None and latest.created_at > closed_at:
                text, at = latest.text, latest.created_at
            else:
                text, at = CLOSED_PLACEHOLDER_TEXT, closed_at
            threads.append(
                DerivedThread(
                    thread_id=thread_id(viewer, peer),
                    peer_email=peer,
                    last_message_text=text,
                    last_message_at=at,
                )
            )
        return threads
