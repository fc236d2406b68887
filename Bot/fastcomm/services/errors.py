"""
fastcomm/services/errors.py

Exception types raised by the FastComm service layer.

Services raise these; orchestration steps catch them at their boundary
and hand structured outcomes to the cogs. No Discord logic lives here.
"""

from __future__ import annotations


class FastCommError(Exception):
    """Base class for all service-layer errors."""


class SessionExpiredError(FastCommError):
    """
    Raised when a workflow step needs a draft (or one of its earlier
    fields) that no longer exists, e.g. after a restart.
    """

    def __init__(self, user_id: str, missing: str = "draft"):
        super().__init__(f"Session for {user_id} has no {missing}")
        self.user_id = user_id
        self.missing = missing


class InvalidTransitionError(FastCommError):
    """Raised when a draft is asked to move to a state its table forbids."""

    def __init__(self, current, target):
        super().__init__(f"Cannot move draft from {current.value} to {target.value}")
        self.current = current
        self.target = target


class ValidationError(FastCommError):
    """Raised for malformed user input (bad slot number, bad index, ...)."""


class FormGatewayError(FastCommError):
    """
    Raised by the Jotform gateway.

    transient:
        True for rate limiting (429), server errors (5xx) and network
        failures. Only transient errors are retried.
    """

    def __init__(self, message: str, status: int | None = None, transient: bool = False):
        super().__init__(message)
        self.status = status
        self.transient = transient


class StorageError(FastCommError):
    """Raised by the Google Drive gateway."""


class RepositoryError(FastCommError):
    """Raised when the GitHub-backed repository cannot be read or written."""


class ConflictError(RepositoryError):
    """Raised when the remote file changed since its sha was read."""


class InvalidIndexError(RepositoryError):
    """Raised when a positional record index falls outside the snapshot."""

    def __init__(self, indices: list[int], size: int):
        super().__init__(f"Invalid indices {indices} for {size} record(s)")
        self.indices = indices
        self.size = size
