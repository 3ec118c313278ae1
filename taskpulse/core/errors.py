"""
Error taxonomy for the metrics pipeline.

Transport failures are recovered locally by fetchers and workers; the
pipeline only raises one when nothing could be fetched at all. Configuration
failures are raised before any request is made.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for every failure surfaced by the metrics pipeline."""

    category = "internal"


class ConfigurationError(PipelineError, ValueError):
    """Missing or invalid settings (API URL, token, tuning values)."""

    category = "configuration"


class TransportError(PipelineError):
    """A single CRM API call failed: network error, non-2xx or malformed payload."""

    category = "transport"

    def __init__(self, message: str, *, status_code: Optional[int] = None, endpoint: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class PipelineTimeoutError(PipelineError):
    """A full pipeline run exceeded its time budget."""

    category = "timeout"


class RateLimiterSaturatedError(PipelineError):
    """The rate limiter backlog is full and the admission was rejected."""

    category = "backpressure"


__all__ = [
    "PipelineError",
    "ConfigurationError",
    "TransportError",
    "PipelineTimeoutError",
    "RateLimiterSaturatedError",
]
