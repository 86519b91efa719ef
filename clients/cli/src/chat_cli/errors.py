from __future__ import annotations


class ChatApiError(Exception):
    """The chat service answered with ``ok: false``."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        super().__init__(message)


class TransientNetworkError(Exception):
    """The chat service could not be reached (timeout or connection failure)."""
