"""
Error taxonomy for source adapters and the aggregator.

Adapters convert every one of these into an empty candidate list at their
boundary; only ConfigurationMissing ever reaches an aggregate() caller.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    PARSE_MISMATCH = "parse_mismatch"
    TIMEOUT = "timeout"
    CONFIGURATION_MISSING = "configuration_missing"
    UNEXPECTED = "unexpected"


class AggregatorError(RuntimeError):
    """Base exception for aggregation failures."""

    kind: ErrorKind = ErrorKind.UNEXPECTED


class UpstreamUnavailable(AggregatorError):
    """Network/transport failure or a non-2xx answer from an upstream."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamRateLimited(UpstreamUnavailable):
    """Upstream throttled the request (HTTP 429)."""

    kind = ErrorKind.UPSTREAM_RATE_LIMITED

    def __init__(self, message: str = "Upstream rate limited the request (HTTP 429).") -> None:
        super().__init__(message, status_code=429)


class ParseMismatch(AggregatorError):
    """Upstream answered but the payload did not have the expected shape."""

    kind = ErrorKind.PARSE_MISMATCH


class SourceTimeout(AggregatorError):
    """Upstream did not answer within the adapter's timeout."""

    kind = ErrorKind.TIMEOUT


class ConfigurationMissing(AggregatorError):
    """Required configuration is absent (e.g. no sources enabled, no service URL)."""

    kind = ErrorKind.CONFIGURATION_MISSING


def classify(exc: BaseException) -> ErrorKind:
    """Map any exception onto the taxonomy for logging and tagged results."""
    if isinstance(exc, AggregatorError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return ErrorKind.PARSE_MISMATCH
    return ErrorKind.UNEXPECTED
