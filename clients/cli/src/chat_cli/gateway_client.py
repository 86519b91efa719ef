"""Minimal stdlib client for the chat service HTTP binding.

Every call carries a bounded timeout. Timeouts and connection failures raise
``TransientNetworkError``; read-only calls retry those with backoff, while
``send_message`` never retries on its own (a resend is the user's decision).
"""

from __future__ import annotations

import http.client
import json
import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable, Dict, Optional, TypeVar

from .errors import ChatApiError, TransientNetworkError

DEFAULT_TIMEOUT_S = 15.0
DEFAULT_READ_RETRIES = 2
DEFAULT_BACKOFF_S = 0.5

T = TypeVar("T")


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _quote(email: str) -> str:
    return urllib.parse.quote(email, safe="")


def _decode(raw: bytes) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw.decode("utf-8"))
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _request(
    method: str,
    url: str,
    session_token: str,
    payload: Optional[Dict[str, object]] = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> Dict[str, Any]:
    headers = {"Content-Type": "application/json", "Authorization": f"Bearer {session_token}"}
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, headers=headers, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout_s) as response:
            body = _decode(response.read())
    except urllib.error.HTTPError as exc:
        body = _decode(exc.read())
        raise ChatApiError(exc.code, str(body.get("error") or f"Request failed ({exc.code})")) from exc
    except (urllib.error.URLError, http.client.HTTPException, socket.timeout, OSError) as exc:
        raise TransientNetworkError(f"Could not reach chat service: {exc}") from exc
    if body.get("ok") is False:
        raise ChatApiError(200, str(body.get("error") or "Request failed"))
    return body


def _with_retries(call: Callable[[], T], retries: int, backoff_s: float) -> T:
    attempt = 0
    delay = backoff_s
    while True:
        try:
            return call()
        except TransientNetworkError:
            if attempt >= retries:
                raise
            attempt += 1
            time.sleep(delay)
            delay *= 2


def _get(
    base_url: str,
    session_token: str,
    path: str,
    *,
    timeout_s: float,
    retries: int,
    backoff_s: float,
) -> Dict[str, Any]:
    url = _build_url(base_url, path)
    return _with_retries(lambda: _request("GET", url, session_token, timeout_s=timeout_s), retries, backoff_s)


def send_message(
    base_url: str,
    session_token: str,
    to_email: str,
    text: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> Dict[str, Any]:
    trimmed = text.strip()
    if not trimmed:
        raise ChatApiError(400, "Message is empty.")
    response = _request(
        "POST",
        _build_url(base_url, "/chat/messages"),
        session_token,
        {"toEmail": to_email, "text": trimmed},
        timeout_s=timeout_s,
    )
    return dict(response.get("message") or {})


def get_conversation(
    base_url: str,
    session_token: str,
    peer_email: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    retries: int = DEFAULT_READ_RETRIES,
    backoff_s: float = DEFAULT_BACKOFF_S,
) -> list[Dict[str, Any]]:
    response = _get(
        base_url,
        session_token,
        f"/chat/messages/{_quote(peer_email)}",
        timeout_s=timeout_s,
        retries=retries,
        backoff_s=backoff_s,
    )
    messages = list(response.get("messages") or [])
    return sorted(messages, key=lambda message: int(message.get("createdAt", 0)))


def list_threads(
    base_url: str,
    session_token: str,
    view: str = "active",
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    retries: int = DEFAULT_READ_RETRIES,
    backoff_s: float = DEFAULT_BACKOFF_S,
) -> list[Dict[str, Any]]:
    response = _get(
        base_url,
        session_token,
        f"/chat/threads?view={urllib.parse.quote(view)}",
        timeout_s=timeout_s,
        retries=retries,
        backoff_s=backoff_s,
    )
    return list(response.get("threads") or [])


def mark_read(
    base_url: str,
    session_token: str,
    peer_email: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> int:
    response = _request(
        "POST",
        _build_url(base_url, "/chat/read"),
        session_token,
        {"peerEmail": peer_email},
        timeout_s=timeout_s,
    )
    return int(response.get("lastReadAt") or 0)


def close_thread(
    base_url: str,
    session_token: str,
    peer_email: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> int:
    response = _request(
        "POST",
        _build_url(base_url, "/chat/close"),
        session_token,
        {"peerEmail": peer_email},
        timeout_s=timeout_s,
    )
    return int(response.get("closedAt") or 0)


def set_typing(
    base_url: str,
    session_token: str,
    to_email: str,
    is_typing: bool,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> None:
    _request(
        "POST",
        _build_url(base_url, "/chat/typing"),
        session_token,
        {"toEmail": to_email, "isTyping": bool(is_typing)},
        timeout_s=timeout_s,
    )


def get_typing(
    base_url: str,
    session_token: str,
    peer_email: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    retries: int = DEFAULT_READ_RETRIES,
    backoff_s: float = DEFAULT_BACKOFF_S,
) -> Dict[str, bool]:
    response = _get(
        base_url,
        session_token,
        f"/chat/typing/{_quote(peer_email)}",
        timeout_s=timeout_s,
        retries=retries,
        backoff_s=backoff_s,
    )
    return {
        "meTyping": bool(response.get("meTyping")),
        "peerTyping": bool(response.get("peerTyping")),
        "eitherTyping": bool(response.get("eitherTyping")),
    }


def list_notifications(
    base_url: str,
    session_token: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    retries: int = DEFAULT_READ_RETRIES,
    backoff_s: float = DEFAULT_BACKOFF_S,
) -> list[Dict[str, Any]]:
    response = _get(
        base_url,
        session_token,
        "/notifications",
        timeout_s=timeout_s,
        retries=retries,
        backoff_s=backoff_s,
    )
    return list(response.get("notifications") or [])


def mark_notification_read(
    base_url: str,
    session_token: str,
    notification_id: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> None:
    _request(
        "PATCH",
        _build_url(base_url, f"/notifications/{_quote(notification_id)}/read"),
        session_token,
        timeout_s=timeout_s,
    )
