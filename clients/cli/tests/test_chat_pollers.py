import asyncio
import http.client
from functools import partial
from unittest import mock

import pytest

from chat_cli import gateway_client
from chat_cli.errors import ChatApiError, TransientNetworkError
from chat_cli.pollers import NotificationPoller, TypingPoller, UnreadBadgePoller


def test_badge_reports_changes_only_when_value_flips():
    responses = [
        [{"unreadCount": 0}],
        [{"unreadCount": 0}, {"unreadCount": 2}],
        [{"unreadCount": 1}],
        [],
    ]
    changes = []
    poller = UnreadBadgePoller(lambda: responses.pop(0), on_change=changes.append)

    async def scenario():
        for _ in range(4):
            assert await poller.refresh()

    asyncio.run(scenario())

    assert changes == [True, False]
    assert poller.has_unread is False


def test_badge_keeps_last_value_when_a_fetch_fails():
    calls = []

    def fetch():
        calls.append(1)
        if len(calls) == 1:
            return [{"unreadCount": 3}]
        raise TransientNetworkError("offline")

    poller = UnreadBadgePoller(fetch)

    async def scenario():
        assert await poller.refresh()
        assert not await poller.refresh()

    asyncio.run(scenario())

    assert poller.has_unread is True


def test_stop_cancels_the_loop():
    calls = []

    def fetch():
        calls.append(1)
        return [{"unreadCount": 1}]

    poller = UnreadBadgePoller(fetch, interval_s=0.01)

    async def scenario():
        poller.start()
        assert poller.running
        while not calls:
            await asyncio.sleep(0.01)
        await poller.stop()
        assert not poller.running
        seen = len(calls)
        await asyncio.sleep(0.05)
        return seen

    seen = asyncio.run(scenario())

    assert len(calls) == seen
    assert poller.has_unread is True


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        UnreadBadgePoller(lambda: [], interval_s=0)


def test_typing_poller_tracks_both_sides():
    poller = TypingPoller(lambda: {"meTyping": False, "peerTyping": True, "eitherTyping": True})

    asyncio.run(poller.refresh())

    assert (poller.me_typing, poller.peer_typing) == (False, True)


def test_notification_poller_delivers_each_unread_once_oldest_first():
    batches = [
        [
            {"id": "n2", "createdAt": 20, "isRead": False},
            {"id": "n1", "createdAt": 10, "isRead": False},
            {"id": "n0", "createdAt": 5, "isRead": True},
        ],
        [{"id": "n3", "createdAt": 30, "isRead": False}, {"id": "n2", "createdAt": 20, "isRead": False}],
    ]
    delivered = []
    poller = NotificationPoller(lambda: batches.pop(0), delivered.append)

    async def scenario():
        await poller.refresh()
        await poller.refresh()

    asyncio.run(scenario())

    assert [item["id"] for item in delivered] == ["n1", "n2", "n3"]


def test_api_errors_skip_the_cycle():
    def fetch():
        raise ChatApiError(401, "Not logged in.")

    poller = NotificationPoller(fetch, lambda item: None)

    assert asyncio.run(poller.refresh()) is False


class _Response:
    def __init__(self, payload: bytes):
        self._payload = payload

    def read(self) -> bytes:
        if self._payload is None:
            raise http.client.IncompleteRead(b'{"ok"')
        return self._payload

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def test_badge_loop_survives_truncated_responses():
    calls = []

    def fake_urlopen(request, timeout):
        calls.append(request.full_url)
        if len(calls) == 1:
            return _Response(b'{"ok": true, "threads": [{"unreadCount": 1}]}')
        return _Response(None)

    fetch = partial(gateway_client.list_threads, "https://chat.test", "st_1", retries=0)
    poller = UnreadBadgePoller(fetch, interval_s=0.01)

    async def wait_for_ticks():
        while len(calls) < 4:
            await asyncio.sleep(0.01)

    async def scenario():
        poller.start()
        await asyncio.wait_for(wait_for_ticks(), timeout=2)
        assert poller.running
        await poller.stop()

    with mock.patch("urllib.request.urlopen", fake_urlopen):
        asyncio.run(scenario())

    assert poller.has_unread is True
    assert not poller.running
