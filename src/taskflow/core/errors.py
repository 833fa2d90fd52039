# src/taskflow/core/errors.py

"""
Error taxonomy shared by the controller, the gateway and the console.

All user-action failures are one of these three; none of them is fatal to the
process. Connectors turn them into an inline message.
"""

from __future__ import annotations


class TaskFlowError(Exception):
    """Base class for expected, user-visible failures."""


class ValidationError(TaskFlowError):
    """Bad user input. Raised before any network call is issued."""


class RemoteError(TaskFlowError):
    """A gateway call failed (network, auth, server-side rejection or timeout)."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotAuthenticated(TaskFlowError):
    """A mutation was attempted without an active session."""

    def __init__(self, message: str = "User not authenticated. Please log in.") -> None:
        super().__init__(message)
