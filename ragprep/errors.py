"""Error types raised by the chunking, embedding and ranking components."""
from typing import Optional


class RagPrepError(Exception):
    """Base class for all ragprep errors."""


class InvalidInputError(RagPrepError, ValueError):
    """Input cannot be processed (empty/short text, malformed vector). Never retried."""


class ProviderFailureError(RagPrepError, RuntimeError):
    """The embedding provider failed or returned an unusable result."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class DimensionMismatchError(RagPrepError, ValueError):
    """Two vectors that must be compared have different lengths."""
