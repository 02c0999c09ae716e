"""
1.0 Error Taxonomy
Named failure conditions shared by the probe, scanner and coordinator.

Control-flow conditions (rate limit, quota, timeout) travel as ErrorKind
values returned by the layer that detects them. Only the fatal kinds are
raised as exceptions, and they abort the invocation before any scanning.
"""

from enum import Enum


# 1.1 Substrings the fetch collaborator uses to signal quota conditions.
# The short-time message must be checked first; it is the more specific one.
RATE_LIMIT_MESSAGE = "Service invoked too many times in a short time:"
QUOTA_MESSAGE = "Service invoked too many times:"


class ErrorKind(Enum):
    """2.0 Kinds of failure an invocation can run into."""
    RATE_LIMITED = "rate_limited"          # retryable, absorbed by the probe
    QPS_EXHAUSTED = "qps_exhausted"        # retries used up, resumable next run
    QUOTA_EXHAUSTED = "quota_exhausted"    # daily budget gone, resumable next run
    EXECUTION_TIMEOUT = "execution_timeout"
    TRANSPORT_ERROR = "transport_error"    # terminal per URL, recorded as text
    CONFIG_INVALID = "config_invalid"
    CHECKPOINT_UNAVAILABLE = "checkpoint_unavailable"


class LinkCheckerError(Exception):
    """Base class for fatal errors."""
    kind = None


class ConfigError(LinkCheckerError):
    """Configuration is missing, malformed, or still holds placeholder values."""
    kind = ErrorKind.CONFIG_INVALID


class CheckpointUnavailableError(LinkCheckerError):
    """A checkpoint mark is missing and cannot be created or removed in preview mode."""
    kind = ErrorKind.CHECKPOINT_UNAVAILABLE


class FetchServiceError(Exception):
    """
    Raised by a fetcher when the fetch service itself refuses a request.

    The message carries RATE_LIMIT_MESSAGE or QUOTA_MESSAGE so callers can
    classify it the same way as any other transport error text.
    """


def classify_fetch_error(message: str) -> ErrorKind:
    """3.0 Map a fetch error message onto its ErrorKind."""
    if RATE_LIMIT_MESSAGE in message:
        return ErrorKind.RATE_LIMITED
    if QUOTA_MESSAGE in message:
        return ErrorKind.QUOTA_EXHAUSTED
    return ErrorKind.TRANSPORT_ERROR
