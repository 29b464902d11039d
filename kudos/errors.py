"""
kudos.errors — Error taxonomy
==============================

Every failure the engine surfaces derives from :class:`KudosError`, which
carries a human-readable ``message`` plus a ``details`` dict that the HTTP
layer serializes verbatim.
"""

from __future__ import annotations

from typing import Any


class KudosError(Exception):
    """Base exception for all engagement-engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class UnknownActionType(KudosError):
    """The recorded action has no matching entry in the point-action catalog."""

    def __init__(self, action_type: str) -> None:
        self.action_type = action_type
        super().__init__(
            f"Unknown action type: {action_type!r}",
            {"action_type": action_type},
        )


class InvalidActionRequest(KudosError, ValueError):
    """The request itself is malformed (empty user id, negative points, ...)."""


class DailyLimitExceeded(KudosError):
    """The user already reached the daily limit for this action."""

    def __init__(self, action_type: str, limit: int) -> None:
        self.action_type = action_type
        self.limit = limit
        super().__init__(
            f"Daily limit of {limit} reached for action {action_type!r}",
            {"action_type": action_type, "daily_limit": limit},
        )


class ConcurrentModificationConflict(KudosError):
    """Another writer updated the same profile between our read and write."""


class ServiceUnavailable(KudosError):
    """Retries were exhausted; the caller may try again later."""


class TransientStorageError(ServiceUnavailable):
    """Storage I/O kept failing after backoff retries."""


class InvariantViolation(KudosError):
    """A state the pipeline guarantees cannot happen was observed."""


class CatalogError(KudosError, ValueError):
    """The point-action / badge catalog failed validation at load time."""
