"""Cancellable polling loops backing the client's live indicators."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, Optional, Set

import structlog

from .errors import ChatApiError, TransientNetworkError

logger = structlog.get_logger()


class Poller:
    """Runs ``tick`` every ``interval_s`` seconds until stopped.

    A failing tick is logged and skipped; the next cycle retries naturally.
    Fetch callables are blocking (urllib), so they run in a worker thread.
    """

    name = "poller"

    def __init__(self, interval_s: float) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.interval_s = interval_s
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> None:
        raise NotImplementedError

    async def refresh(self) -> bool:
        """Run one cycle; return False when the cycle was skipped."""

        try:
            await self.tick()
        except (TransientNetworkError, ChatApiError) as exc:
            logger.info("poll_tick_skipped", poller=self.name, error=str(exc))
            return False
        return True

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval_s)


class UnreadBadgePoller(Poller):
    """Derives a single "has any unread" flag from the active thread list."""

    name = "unread_badge"

    def __init__(
        self,
        fetch_threads: Callable[[], Iterable[Dict[str, Any]]],
        interval_s: float = 3.0,
        on_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        super().__init__(interval_s)
        self._fetch_threads = fetch_threads
        self._on_change = on_change
        self.has_unread = False

    async def tick(self) -> None:
        threads = await asyncio.to_thread(self._fetch_threads)
        has_unread = any(int(thread.get("unreadCount") or 0) > 0 for thread in threads)
        if has_unread != self.has_unread:
            self.has_unread = has_unread
            if self._on_change is not None:
                self._on_change(has_unread)


class TypingPoller(Poller):
    name = "typing"

    def __init__(self, fetch_typing: Callable[[], Dict[str, bool]], interval_s: float = 2.5) -> None:
        super().__init__(interval_s)
        self._fetch_typing = fetch_typing
        self.me_typing = False
        self.peer_typing = False

    async def tick(self) -> None:
        status = await asyncio.to_thread(self._fetch_typing)
        self.me_typing = bool(status.get("meTyping"))
        self.peer_typing = bool(status.get("peerTyping"))


class NotificationPoller(Poller):
    """Hands each unread notification to ``on_new`` exactly once."""

    name = "notifications"

    def __init__(
        self,
        fetch_notifications: Callable[[], Iterable[Dict[str, Any]]],
        on_new: Callable[[Dict[str, Any]], None],
        interval_s: float = 5.0,
    ) -> None:
        super().__init__(interval_s)
        self._fetch_notifications = fetch_notifications
        self._on_new = on_new
        self._seen: Set[str] = set()

    async def tick(self) -> None:
        notifications = await asyncio.to_thread(self._fetch_notifications)
        # Oldest first so callers see them in arrival order.
        for notification in sorted(notifications, key=lambda item: int(item.get("createdAt") or 0)):
            notification_id = str(notification.get("id"))
            if notification.get("isRead") or notification_id in self._seen:
                continue
            self._seen.add(notification_id)
            self._on_new(notification)
