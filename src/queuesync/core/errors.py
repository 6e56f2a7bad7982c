"""
Error kinds for queuesync.

The core only raises these; the CLI maps them to exit codes and messages.
"""

from __future__ import annotations


class QueueSyncError(Exception):
    """Base error for queuesync."""


class ConfigError(QueueSyncError):
    """Runtime settings cannot be resolved (missing/invalid values)."""


class TopologyError(ConfigError):
    """The declared queue/topic document is malformed."""


class ConfigConflict(ConfigError):
    """The declared topology violates an invariant (e.g. topic both subscribed and unsubscribed)."""


class ResolutionError(QueueSyncError):
    """A queue or topic name could not be turned into a backend identifier."""

    def __init__(self, message: str, *, name: str = "", kind: str = "") -> None:
        super().__init__(message)
        self.name = name
        self.kind = kind


class NotFound(ResolutionError):
    """No resource with that name exists in the target account/region."""


class Ambiguous(ResolutionError):
    """More than one resource matched a name that must be unique."""


class BackendUnavailable(QueueSyncError):
    """The backend kept failing after retries (or the run deadline passed)."""
