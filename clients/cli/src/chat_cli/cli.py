from __future__ import annotations

import argparse
import asyncio
import json
import sys
from functools import partial
from typing import Any, TextIO

from . import gateway_client
from .config import get_client_settings
from .errors import ChatApiError, TransientNetworkError
from .pollers import UnreadBadgePoller


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chat-cli", description="LabourLink chat client")
    parser.add_argument("--base-url", default=None, help="Chat service base URL")
    parser.add_argument("--token", default=None, help="Session bearer token")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    subparsers = parser.add_subparsers(dest="command", required=True)

    send = subparsers.add_parser("send", help="Send a message")
    send.add_argument("to_email")
    send.add_argument("text")

    messages = subparsers.add_parser("messages", help="Show the conversation with a peer")
    messages.add_argument("peer_email")

    threads = subparsers.add_parser("threads", help="List threads")
    threads.add_argument("--view", choices=("active", "history"), default="active")

    read = subparsers.add_parser("read", help="Mark a thread read")
    read.add_argument("peer_email")

    close = subparsers.add_parser("close", help="Close a thread")
    close.add_argument("peer_email")

    typing = subparsers.add_parser("typing", help="Set the typing indicator")
    typing.add_argument("to_email")
    typing.add_argument("state", choices=("on", "off"))

    typing_status = subparsers.add_parser("typing-status", help="Show typing state with a peer")
    typing_status.add_argument("peer_email")

    subparsers.add_parser("badge", help="Print whether any active thread is unread")
    return parser


async def _badge(base_url: str, token: str, timeout_s: float) -> bool:
    poller = UnreadBadgePoller(partial(gateway_client.list_threads, base_url, token, timeout_s=timeout_s))
    if not await poller.refresh():
        raise TransientNetworkError("badge refresh skipped")
    return poller.has_unread


def _dispatch(args: argparse.Namespace, base_url: str, token: str, timeout_s: float) -> Any:
    if args.command == "send":
        return gateway_client.send_message(base_url, token, args.to_email, args.text, timeout_s=timeout_s)
    if args.command == "messages":
        return gateway_client.get_conversation(base_url, token, args.peer_email, timeout_s=timeout_s)
    if args.command == "threads":
        return gateway_client.list_threads(base_url, token, args.view, timeout_s=timeout_s)
    if args.command == "read":
        return {"lastReadAt": gateway_client.mark_read(base_url, token, args.peer_email, timeout_s=timeout_s)}
    if args.command == "close":
        return {"closedAt": gateway_client.close_thread(base_url, token, args.peer_email, timeout_s=timeout_s)}
    if args.command == "typing":
        gateway_client.set_typing(base_url, token, args.to_email, args.state == "on", timeout_s=timeout_s)
        return {"ok": True}
    if args.command == "typing-status":
        return gateway_client.get_typing(base_url, token, args.peer_email, timeout_s=timeout_s)
    return {"hasUnread": asyncio.run(_badge(base_url, token, timeout_s))}


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    stream = output or sys.stdout
    settings = get_client_settings()
    args = _build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    base_url = args.base_url or settings.base_url
    token = args.token or settings.session_token
    timeout_s = args.timeout or settings.timeout_seconds
    if not token:
        stream.write("Not logged in: pass --token or set LABOURCHAT_CLIENT_SESSION_TOKEN\n")
        return 2

    try:
        result = _dispatch(args, base_url, token, timeout_s)
    except ChatApiError as exc:
        stream.write(f"Can't {args.command}: {exc}\n")
        return 1
    except TransientNetworkError as exc:
        stream.write(f"{exc}\n")
        return 3
    stream.write(json.dumps(result, indent=2) + "\n")
    return 0


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
