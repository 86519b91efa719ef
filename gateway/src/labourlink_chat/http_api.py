from __future__ import annotations

from typing import Any, Awaitable, Callable

import structlog
from aiohttp import web

from .closures import ThreadClosureStore
from .clock import NowFunc, now_ms
from .cursors import ReadCursorStore
from .directory import InMemoryUserDirectory, UserDirectory
from .errors import ChatError, UnauthenticatedError, ValidationError
from .message_log import MessageLog
from .notifications import InAppNotifier, NotificationStore, Notifier, SQLiteNotificationStore
from .projector import ACTIVE
from .service import MessagingService
from .sessions import DEFAULT_TTL_MS, SessionStore, SQLiteSessionStore
from .sqlite_backend import SQLiteBackend
from .sqlite_closures import SQLiteThreadClosureStore
from .sqlite_cursors import SQLiteReadCursorStore
from .sqlite_message_log import SQLiteMessageLog
from .typing_tracker import TypingConfig, TypingTracker

logger = structlog.get_logger()

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class Runtime:
    def __init__(
        self,
        *,
        service: MessagingService,
        sessions: SessionStore | SQLiteSessionStore,
        notifications: NotificationStore | SQLiteNotificationStore,
        backend: SQLiteBackend | None = None,
    ) -> None:
        self.service = service
        self.sessions = sessions
        self.notifications = notifications
        self.backend = backend


RUNTIME_KEY = web.AppKey("runtime", Runtime)


def _with_no_store(response: web.Response) -> web.Response:
    response.headers["Cache-Control"] = "no-store"
    return response


def _ok(data: dict[str, Any] | None = None) -> web.Response:
    return _with_no_store(web.json_response({"ok": True, **(data or {})}))


def _error(status: int, message: str) -> web.Response:
    return _with_no_store(web.json_response({"ok": False, "error": message}, status=status))


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except ChatError as exc:
        if exc.status >= 500:
            logger.warning("request_failed", path=request.path, status=exc.status, error=str(exc))
        return _error(exc.status, str(exc) or exc.code)
    except web.HTTPException as exc:
        if exc.status < 400:
            raise
        return _error(exc.status, exc.reason)


def _session_email(request: web.Request) -> str:
    runtime = request.app[RUNTIME_KEY]
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise UnauthenticatedError("Not logged in.")
    session = runtime.sessions.get_by_session(auth_header[len("Bearer ") :].strip())
    if session is None:
        raise UnauthenticatedError("Session expired or invalid.")
    return session.email


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except Exception:
        raise ValidationError("malformed json") from None
    if not isinstance(body, dict):
        raise ValidationError("json object required")
    return body


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


async def handle_send_message(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    body = await _json_body(request)
    to_email = body.get("toEmail")
    text = body.get("text")
    if not isinstance(to_email, str) or not to_email.strip():
        raise ValidationError("Recipient is required.")
    if not isinstance(text, str):
        raise ValidationError("Message is empty.")
    message = runtime.service.send_message(me, to_email, text)
    return _ok({"message": message.to_wire()})


async def handle_get_conversation(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    messages = runtime.service.get_conversation(me, request.match_info["peer_email"])
    return _ok({"messages": [message.to_wire() for message in messages]})


async def handle_list_threads(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    view = request.query.get("view", ACTIVE)
    threads = runtime.service.list_threads(me, view)
    return _ok({"threads": [thread.to_wire() for thread in threads]})


async def handle_mark_read(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    body = await _json_body(request)
    last_read_at = runtime.service.mark_read(me, body.get("peerEmail"))
    return _ok({"lastReadAt": last_read_at})


async def handle_close_thread(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    body = await _json_body(request)
    closed_at = runtime.service.close_thread(me, body.get("peerEmail"))
    return _ok({"closedAt": closed_at})


async def handle_set_typing(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    body = await _json_body(request)
    is_typing = body.get("isTyping")
    if not isinstance(is_typing, bool):
        raise ValidationError("isTyping must be a boolean")
    runtime.service.set_typing(me, body.get("toEmail"), is_typing)
    return _ok()


async def handle_get_typing(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    status = runtime.service.get_typing(me, request.match_info["peer_email"])
    return _ok(status.to_wire())


async def handle_list_notifications(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    notifications = runtime.notifications.list_for(me)
    return _ok({"notifications": [item.to_wire() for item in notifications]})


async def handle_mark_notification_read(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    me = _session_email(request)
    if not runtime.notifications.mark_read(me, request.match_info["notification_id"]):
        return _error(404, "Notification not found.")
    return _ok()


def create_app(
    *,
    db_path: str | None = None,
    directory: UserDirectory | None = None,
    typing_freshness_seconds: float = 10.0,
    session_ttl_ms: int = DEFAULT_TTL_MS,
    notifier: Notifier | None = None,
    now_func: NowFunc = now_ms,
) -> web.Application:
    if directory is None:
        directory = InMemoryUserDirectory()
    backend: SQLiteBackend | None = None
    if db_path is not None:
        backend = SQLiteBackend(db_path)
        log = SQLiteMessageLog(backend, directory)
        cursors = SQLiteReadCursorStore(backend)
        closures = SQLiteThreadClosureStore(backend)
        sessions: SessionStore | SQLiteSessionStore = SQLiteSessionStore(backend, session_ttl_ms, now_func=now_func)
        notifications: NotificationStore | SQLiteNotificationStore = SQLiteNotificationStore(backend)
    else:
        log = MessageLog(directory)
        cursors = ReadCursorStore()
        closures = ThreadClosureStore()
        sessions = SessionStore(session_ttl_ms, now_func=now_func)
        notifications = NotificationStore()

    service = MessagingService(
        log=log,
        cursors=cursors,
        closures=closures,
        typing=TypingTracker(TypingConfig(freshness_seconds=typing_freshness_seconds), now_func=now_func),
        directory=directory,
        notifier=notifier or InAppNotifier(notifications, now_func=now_func),
        now_func=now_func,
    )
    runtime = Runtime(service=service, sessions=sessions, notifications=notifications, backend=backend)

    app = web.Application(middlewares=[error_middleware])
    app[RUNTIME_KEY] = runtime
    app.router.add_get("/healthz", handle_health)
    app.router.add_post("/chat/messages", handle_send_message)
    app.router.add_get("/chat/messages/{peer_email}", handle_get_conversation)
    app.router.add_get("/chat/threads", handle_list_threads)
    app.router.add_post("/chat/read", handle_mark_read)
    app.router.add_post("/chat/close", handle_close_thread)
    app.router.add_post("/chat/typing", handle_set_typing)
    app.router.add_get("/chat/typing/{peer_email}", handle_get_typing)
    app.router.add_get("/notifications", handle_list_notifications)
    app.router.add_patch("/notifications/{notification_id}/read", handle_mark_notification_read)
    if backend is not None:
        async def close_db(_: web.Application) -> None:
            backend.close()

        app.on_cleanup.append(close_db)
    return app
