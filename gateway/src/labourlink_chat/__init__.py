"""Per-pair chat core for the LabourLink marketplace."""

from .closures import ThreadClosureStore
from .cursors import ReadCursorStore
from .directory import InMemoryUserDirectory, UserRecord
from .errors import (
    ChatError,
    CrossRoleError,
    NotFoundError,
    StoreUnavailableError,
    UnauthenticatedError,
    ValidationError,
)
from .message_log import Message, MessageLog
from .projector import DerivedThread, ThreadProjector
from .service import MessagingService
from .typing_tracker import TypingStatus, TypingTracker

__all__ = [
    "ChatError",
    "CrossRoleError",
    "DerivedThread",
    "InMemoryUserDirectory",
    "Message",
    "MessageLog",
    "MessagingService",
    "NotFoundError",
    "ReadCursorStore",
    "StoreUnavailableError",
    "ThreadClosureStore",
    "ThreadProjector",
    "TypingStatus",
    "TypingTracker",
    "UnauthenticatedError",
    "UserRecord",
    "ValidationError",
]
