"""
Exception hierarchy for the offline layer.

Network failures are absorbed by the policy executor, storage failures in
background refills end up in the diagnostic channel, install failures are
raised to whoever drives the lifecycle.
"""
from typing import Any, Dict, Optional


class StillSpaceError(Exception):
    """Base class for all offline-layer errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class NetworkError(StillSpaceError):
    """The fetch was rejected: connection refused, DNS failure, timeout."""


class CacheStorageError(StillSpaceError):
    """A cache read or write could not be completed."""


class BodyUsedError(StillSpaceError):
    """A response body was read twice, or cloned after being read."""


class InstallError(StillSpaceError):
    """Pre-warming the static generation failed; the install is aborted."""


class QueueClosedError(StillSpaceError):
    """The write queue was closed before the operation could run."""
