from __future__ import annotations

import threading
from typing import Dict, Tuple

from .identity import normalize_email


class ThreadClosureStore:
    """Per-(owner, peer) closure boundaries.

    Closing writes the same boundary for both directions of the pair. There is
    no reopen: a thread is active again once a message newer than the boundary
    exists, which the projector derives.
    """

    def __init__(self) -> None:
        self._closed: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def close(self, owner_email: str, peer_email: str, closed_at: int) -> int:
        if closed_at < 0:
            raise ValueError("closed_at must be non-negative")
        owner = normalize_email(owner_email)
        peer = normalize_email(peer_email)
        with self._lock:
            boundary = max(int(closed_at), self._closed.get((owner, peer), 0), self._closed.get((peer, owner), 0))
            self._closed[(owner, peer)] = boundary
            self._closed[(peer, owner)] = boundary
        return boundary

    def closed_at(self, owner_email: str, peer_email: str) -> int:
        key = (normalize_email(owner_email), normalize_email(peer_email))
        with self._lock:
            return self._closed.get(key, 0)

    def closed_at_by_peer(self, viewer_email: str) -> Dict[str, int]:
        """Return the latest boundary per counterpart, from either key column."""

        viewer = normalize_email(viewer_email)
        boundaries: Dict[str, int] = {}
        with self._lock:
            for (owner, peer), closed_at in self._closed.items():
                if owner == viewer:
                    other = peer
                elif peer == viewer:
                    other = owner
                else:
                    continue
                boundaries[other] = max(boundaries.get(other, 0), closed_at)
        return boundaries
