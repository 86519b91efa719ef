"""User directory boundary: the core only needs a role and a display name."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Protocol

from .identity import normalize_email, require_email

ROLES = ("builder", "labourer", "owner")
MESSAGING_PAIR = frozenset({"builder", "labourer"})


@dataclass(frozen=True)
class UserRecord:
    email: str
    role: str
    display_name: str = ""

    @property
    def name(self) -> str:
        return self.display_name or self.email


def roles_may_message(sender_role: str, recipient_role: str) -> bool:
    return frozenset({sender_role, recipient_role}) == MESSAGING_PAIR


class UserDirectory(Protocol):
    def get(self, email: str) -> UserRecord | None: ...


class InMemoryUserDirectory:
    def __init__(self, users: Iterable[UserRecord] = ()) -> None:
        self._users: Dict[str, UserRecord] = {}
        self._lock = threading.Lock()
        for user in users:
            self.add(user)

    def add(self, user: UserRecord) -> UserRecord:
        email = require_email(user.email)
        if user.role not in ROLES:
            raise ValueError(f"unknown role: {user.role}")
        record = UserRecord(email=email, role=user.role, display_name=user.display_name.strip())
        with self._lock:
            self._users[email] = record
        return record

    def get(self, email: str) -> UserRecord | None:
        with self._lock:
            return self._users.get(normalize_email(email))

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryUserDirectory":
        """Load ``[{"email", "role", "display_name"}]`` rows from a JSON file."""

        rows = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(rows, list):
            raise ValueError("users file must contain a JSON list")
        users = []
        for row in rows:
            if not isinstance(row, dict) or not isinstance(row.get("email"), str) or not isinstance(row.get("role"), str):
                raise ValueError("each user needs string email and role")
            users.append(
                UserRecord(
                    email=row["email"],
                    role=row["role"],
                    display_name=str(row.get("display_name") or ""),
                )
            )
        return cls(users)
