"""
Error taxonomy for the consolidation service.

Only conditions that must stop the caller are exceptions. Resolution
misses, duplicate deliveries and unmatched recaps are ordinary results and
are reported through counters instead.
"""
from typing import Optional


class ConsolidationError(Exception):
    """Base class for all service errors."""


class ConfigurationError(ConsolidationError):
    """A required table, column or setting is missing. Aborts the run."""


class InvalidPayloadError(ConsolidationError):
    """An inbound payload cannot be interpreted."""


class ExternalServiceError(ConsolidationError):
    """A call to the issue tracker failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
