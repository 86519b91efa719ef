"""Command line entry point: serve the HTTP binding, issue sessions, replay scenarios."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Iterable, TextIO

import structlog
from aiohttp import web

from .closures import ThreadClosureStore
from .config import Settings, get_settings
from .cursors import ReadCursorStore
from .directory import InMemoryUserDirectory, UserRecord
from .errors import ChatError
from .http_api import create_app
from .logging_config import configure_logging
from .message_log import MessageLog
from .notifications import InAppNotifier, NotificationStore
from .service import MessagingService
from .sessions import SQLiteSessionStore
from .sqlite_backend import SQLiteBackend
from .typing_tracker import TypingConfig, TypingTracker

logger = structlog.get_logger()


class ScriptedClock:
    """Clock driven by the ``at`` field of simulation frames."""

    def __init__(self, start_ms: int = 0) -> None:
        self.now_ms = start_ms

    def now(self) -> int:
        return self.now_ms


def _run_frame(service: MessagingService, directory: InMemoryUserDirectory, frame: dict) -> dict[str, Any]:
    op = frame.get("op")
    if op == "user":
        record = directory.add(
            UserRecord(email=frame["email"], role=frame["role"], display_name=frame.get("display_name", ""))
        )
        return {"email": record.email}
    if op == "send":
        message = service.send_message(frame["from"], frame["to"], frame["text"])
        return {"message": message.to_wire()}
    if op == "conversation":
        messages = service.get_conversation(frame["viewer"], frame["peer"])
        return {"messages": [message.to_wire() for message in messages]}
    if op == "threads":
        threads = service.list_threads(frame["viewer"], frame.get("view", "active"))
        return {"threads": [thread.to_wire() for thread in threads]}
    if op == "read":
        return {"lastReadAt": service.mark_read(frame["viewer"], frame["peer"])}
    if op == "close":
        return {"closedAt": service.close_thread(frame["owner"], frame["peer"])}
    if op == "typing":
        service.set_typing(frame["from"], frame["to"], bool(frame["is_typing"]))
        return {}
    if op == "get_typing":
        return service.get_typing(frame["viewer"], frame["peer"]).to_wire()
    raise ValueError(f"unsupported op: {op}")


def simulate(frames: Iterable[dict], output: TextIO) -> None:
    """Replay operation frames against an in-memory service, one result line per frame."""

    clock = ScriptedClock()
    directory = InMemoryUserDirectory()
    service = MessagingService(
        log=MessageLog(directory),
        cursors=ReadCursorStore(),
        closures=ThreadClosureStore(),
        typing=TypingTracker(TypingConfig(), now_func=clock.now),
        directory=directory,
        notifier=InAppNotifier(NotificationStore(), now_func=clock.now),
        now_func=clock.now,
    )

    for frame in frames:
        if "at" in frame:
            clock.now_ms = int(frame["at"])
        try:
            result = {"op": frame.get("op"), "ok": True, **_run_frame(service, directory, frame)}
        except ChatError as exc:
            result = {"op": frame.get("op"), "ok": False, "error": str(exc)}
        output.write(json.dumps(result) + "\n")


def _load_frames(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _run_serve(args: argparse.Namespace, settings: Settings) -> int:
    users_file = args.users or settings.users_file
    directory = InMemoryUserDirectory.from_json_file(users_file) if users_file else InMemoryUserDirectory()
    app = create_app(
        db_path=args.db or settings.db_path,
        directory=directory,
        typing_freshness_seconds=args.typing_freshness or settings.typing_freshness_seconds,
        session_ttl_ms=settings.session_ttl_seconds * 1000,
    )
    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("chat_server_starting", host=host, port=port, durable=bool(args.db or settings.db_path))
    web.run_app(app, host=host, port=port, print=None)
    return 0


def _run_issue_session(args: argparse.Namespace, settings: Settings, output: TextIO) -> int:
    db_path = args.db or settings.db_path
    if not db_path:
        raise SystemExit("issue-session needs --db or LABOURCHAT_DB_PATH")
    backend = SQLiteBackend(db_path)
    try:
        session = SQLiteSessionStore(backend, settings.session_ttl_seconds * 1000).create(args.email)
    finally:
        backend.close()
    output.write(session.session_token + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="labourlink-chat", description="LabourLink chat server")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp chat server")
    serve_parser.add_argument("--host", default=None, help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind")
    serve_parser.add_argument("--db", type=str, default=None, help="Path to SQLite database for durability")
    serve_parser.add_argument("--users", type=str, default=None, help="JSON user directory file")
    serve_parser.add_argument(
        "--typing-freshness",
        type=float,
        default=None,
        help="Seconds before a typing signal goes stale",
    )

    session_parser = subparsers.add_parser("issue-session", help="Issue a bearer token for an email")
    session_parser.add_argument("email", help="Already-authenticated user email")
    session_parser.add_argument("--db", type=str, default=None, help="Path to SQLite database")

    simulate_parser = subparsers.add_parser("simulate", help="Replay JSON operation frames")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )
    return parser


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    settings = get_settings()
    args = build_parser().parse_args(argv)
    configure_logging(settings.log_level, settings.log_json)

    if args.command == "serve":
        return _run_serve(args, settings)
    if args.command == "issue-session":
        return _run_issue_session(args, settings, output or sys.stdout)

    simulate(_load_frames(args.file or sys.stdin), output or sys.stdout)
    return 0


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
