"""
Error taxonomy for FX Harvest.

Everything below ``HarvestError`` is recoverable at some level except
``SessionUnavailable``, which ends the running session.
"""

from __future__ import annotations


class HarvestError(Exception):
    """Base exception for harvest errors."""

    def __init__(self, message: str, detail: str = ""):
        self.detail = detail
        super().__init__(message)


class ActuationNotReady(HarvestError):
    """Raised when a page control is missing, disabled, or hidden."""
    pass


class FetchError(HarvestError):
    """Raised when an image reference cannot be resolved to bytes."""

    def __init__(self, message: str, reference: str = "", status_code: int = 0):
        self.reference = reference
        self.status_code = status_code
        super().__init__(message, detail=reference[:80])


class PersistError(HarvestError):
    """Raised when image bytes cannot be written to the output directory."""

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message, detail=path)


class StepError(HarvestError):
    """Wraps any other failure raised inside a controller step."""
    pass


class SessionUnavailable(HarvestError):
    """Raised when the target page or the control surface is gone."""
    pass
