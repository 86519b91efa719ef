from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Tuple

from .clock import NowFunc, now_ms
from .identity import normalize_email


@dataclass
class TypingConfig:
    freshness_seconds: float = 10.0


@dataclass
class TypingState:
    is_typing: bool
    updated_at: int


@dataclass(frozen=True)
class TypingStatus:
    me_typing: bool = False
    peer_typing: bool = False

    @property
    def either_typing(self) -> bool:
        return self.me_typing or self.peer_typing

    def to_wire(self) -> dict:
        return {
            "meTyping": self.me_typing,
            "peerTyping": self.peer_typing,
            "eitherTyping": self.either_typing,
        }


class TypingTracker:
    """Directional, ephemeral "is typing" flags.

    Signals decay at read time once older than the freshness window; nothing
    sweeps or deletes rows.
    """

    def __init__(self, config: TypingConfig | None = None, *, now_func: NowFunc = now_ms) -> None:
        self.config = config or TypingConfig()
        self._now = now_func
        self._states: Dict[Tuple[str, str], TypingState] = {}
        self._lock = threading.Lock()

    def set_typing(self, from_email: str, to_email: str, is_typing: bool) -> None:
        key = (normalize_email(from_email), normalize_email(to_email))
        state = TypingState(is_typing=bool(is_typing), updated_at=self._now())
        with self._lock:
            self._states[key] = state

    def get_typing(self, viewer_email: str, peer_email: str) -> TypingStatus:
        viewer = normalize_email(viewer_email)
        peer = normalize_email(peer_email)
        cutoff = self._now() - int(self.config.freshness_seconds * 1000)
        with self._lock:
            mine = self._states.get((viewer, peer))
            theirs = self._states.get((peer, viewer))
        return TypingStatus(
            me_typing=self._is_fresh(mine, cutoff),
            peer_typing=self._is_fresh(theirs, cutoff),
        )

    @staticmethod
    def _is_fresh(state: TypingState | None, cutoff: int) -> bool:
        return state is not None and state.is_typing and state.updated_at >= cutoff
