from __future__ import annotations


class ChatError(Exception):
    """Base class for failures surfaced by the messaging core."""

    status = 500
    code = "internal"


class ValidationError(ChatError):
    status = 400
    code = "invalid_request"


class CrossRoleError(ValidationError):
    """Raised when two users of the same role try to exchange messages."""

    status = 403
    code = "role_violation"


class NotFoundError(ChatError):
    status = 404
    code = "not_found"


class UnauthenticatedError(ChatError):
    status = 401
    code = "unauthorized"


class StoreUnavailableError(ChatError):
    status = 503
    code = "unavailable"
