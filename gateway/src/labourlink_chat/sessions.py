from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass

from .clock import NowFunc, now_ms
from .identity import normalize_email
from .sqlite_backend import SQLiteBackend

DEFAULT_TTL_MS = 30 * 24 * 60 * 60 * 1000


@dataclass
class Session:
    email: str
    session_token: str
    expires_at_ms: int


def _new_token() -> str:
    return f"st_{secrets.token_urlsafe(16)}"


class SessionStore:
    """Maps bearer tokens to already-authenticated emails."""

    def __init__(self, ttl_ms: int = DEFAULT_TTL_MS, *, now_func: NowFunc = now_ms) -> None:
        self._ttl_ms = ttl_ms
        self._now = now_func
        self._by_token: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, email: str) -> Session:
        session = Session(
            email=normalize_email(email),
            session_token=_new_token(),
            expires_at_ms=self._now() + self._ttl_ms,
        )
        with self._lock:
            self._by_token[session.session_token] = session
        return session

    def get_by_session(self, session_token: str) -> Session | None:
        with self._lock:
            session = self._by_token.get(session_token)
        if session is None:
            return None
        if session.expires_at_ms <= self._now():
            self.invalidate(session)
            return None
        return session

    def invalidate(self, session: Session) -> None:
        with self._lock:
            self._by_token.pop(session.session_token, None)


class SQLiteSessionStore:
    """Durable session store backed by SQLite."""

    def __init__(self, backend: SQLiteBackend, ttl_ms: int = DEFAULT_TTL_MS, *, now_func: NowFunc = now_ms) -> None:
        self._backend = backend
        self._ttl_ms = ttl_ms
        self._now = now_func

    def create(self, email: str) -> Session:
        session = Session(
            email=normalize_email(email),
            session_token=_new_token(),
            expires_at_ms=self._now() + self._ttl_ms,
        )
        with self._backend.lock:
            self._backend.connection.execute(
                "INSERT INTO sessions (session_token, email, expires_at_ms) VALUES (?, ?, ?)",
                (session.session_token, session.email, session.expires_at_ms),
            )
        return session

    def get_by_session(self, session_token: str) -> Session | None:
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT session_token, email, expires_at_ms FROM sessions WHERE session_token=?",
                (session_token,),
            ).fetchone()
        if row is None:
            return None
        session = Session(session_token=row[0], email=row[1], expires_at_ms=int(row[2]))
        if session.expires_at_ms <= self._now():
            self.invalidate(session)
            return None
        return session

    def invalidate(self, session: Session) -> None:
        with self._backend.lock:
            self._backend.connection.execute(
                "DELETE FROM sessions WHERE session_token=?",
                (session.session_token,),
            )
