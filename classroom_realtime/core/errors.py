# classroom_realtime/core/errors.py

from __future__ import annotations

from typing import Any, Dict, Optional


class RealtimeError(Exception):
    """
    Base class for every error the realtime layer reports to a client.

    Each subclass carries the HTTP status used by the REST routes and a short
    machine-readable reason used by the socket `error` event.
    """

    status_code: int = 500
    reason: str = "error"

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "reason": self.reason}


class AuthError(RealtimeError):
    """Missing, malformed or expired credential."""

    status_code = 401
    reason = "unauthenticated"


class AuthorizationError(RealtimeError):
    """Valid identity, but not allowed to act on the target."""

    status_code = 403
    reason = "forbidden"


class ContentRejected(RealtimeError):
    status_code = 400
    reason = "invalid"


class RateLimited(RealtimeError):
    status_code = 429
    reason = "rate_limited"

    def __init__(self, retry_after_ms: int, message: str = "Too many messages. Please try again later.") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retryAfter"] = self.retry_after_ms
        return data


class NotFound(RealtimeError):
    status_code = 404
    reason = "not_found"


class InfrastructureDegraded(RealtimeError):
    """Shared bus or counter store unreachable. Absorbed on non-critical paths."""

    status_code = 503
    reason = "degraded"


class PersistenceFailure(RealtimeError):
    """Durable store unreachable. Fatal to the post that triggered it."""

    status_code = 500
    reason = "persistence_failure"
