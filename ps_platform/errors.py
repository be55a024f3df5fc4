# /ps_platform/errors.py
# PrefSync - error taxonomy shared by the sync core
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from typing import Any

__all__ = [
    "SyncError",
    "NotLoaded",
    "AlreadyInProgress",
    "AuthorityReadFailed",
    "AuthorityWriteFailed",
    "EngagementWriteFailed",
    "ConfigurationDefect",
    "IncompleteMatrix",
]


class SyncError(RuntimeError):
    """Base class; `message` is safe to show to the user."""

    message: str = "Something went wrong while saving your preferences."

    def __init__(self, detail: str | None = None, *, cause: BaseException | None = None, **context: Any) -> None:
        self.detail = detail or self.message
        self.cause = cause
        self.context: dict[str, Any] = dict(context)
        super().__init__(self.detail)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": type(self).__name__, "message": self.message, "detail": self.detail}
        if self.context:
            out["context"] = dict(self.context)
        return out


class NotLoaded(SyncError):
    message = "Your preferences have not been loaded yet. Please reload the page."


class AlreadyInProgress(SyncError):
    message = "A save is already in progress. Please wait for it to finish."


class AuthorityReadFailed(SyncError):
    message = "We could not load your notification preferences. Please try again."


class AuthorityWriteFailed(SyncError):
    message = "Your preferences could not be saved. Your changes are kept so you can retry."


class EngagementWriteFailed(SyncError):
    message = "Your preferences were saved, but marketing subscriptions will update shortly."


class ConfigurationDefect(SyncError):
    message = "Notification preferences are misconfigured."


class IncompleteMatrix(SyncError, ValueError):
    message = "The submitted preferences do not cover every topic and channel."
