"""
Classification of stream terminations as retryable or fatal.

A termination is retryable only when it signals that the transport was
temporarily unavailable (connection dropped, server unavailable, timeout,
reset). Everything else is fatal, including terminations the tables below
do not recognize: an unknown failure ends the session instead of retrying
forever against a broken configuration.

Classification order:
1. Status codes with a fixed meaning (RETRYABLE_CODES, FATAL_CODES)
2. Message patterns for codes that are ambiguous on their own
   (UNKNOWN, INTERNAL, ABORTED, CANCELLED, or no code at all)
3. FATAL
"""

import errno
from enum import Enum

from corecast.exceptions import TransportError


class ErrorClass(Enum):
    """Whether a termination justifies another connection attempt."""

    RETRYABLE = "retryable"
    """Transient transport unavailability; back off and reconnect."""

    FATAL = "fatal"
    """Permanent or unrecognized failure; the session must stop."""


RETRYABLE_CODES: frozenset[str] = frozenset(
    {
        "UNAVAILABLE",
        "DEADLINE_EXCEEDED",
    }
)

FATAL_CODES: frozenset[str] = frozenset(
    {
        "UNAUTHENTICATED",
        "PERMISSION_DENIED",
        "INVALID_ARGUMENT",
        "FAILED_PRECONDITION",
        "NOT_FOUND",
        "ALREADY_EXISTS",
        "OUT_OF_RANGE",
        "UNIMPLEMENTED",
        "RESOURCE_EXHAUSTED",
        "DATA_LOSS",
    }
)

# Lower-cased substrings that identify a dropped or reset transport
TRANSIENT_MESSAGE_PATTERNS: tuple[str, ...] = (
    "connection reset",
    "econnreset",
    "econnrefused",
    "connection refused",
    "connection dropped",
    "connection closed",
    "connection lost",
    "socket closed",
    "broken pipe",
    "rst_stream",
    "goaway",
    "stream removed",
    "keepalive",
    "timed out",
    "timeout",
    "unavailable",
)

# Exceptions without a status code that always mean the transport went away
TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
)

# OSError numbers for a network that is temporarily out of reach
TRANSIENT_ERRNOS: frozenset[int] = frozenset(
    {
        errno.ENETDOWN,
        errno.ENETUNREACH,
        errno.ENETRESET,
        errno.EHOSTUNREACH,
    }
)


def classify(code: str | None, message: str = "") -> ErrorClass:
    """
    Classify a termination by status code and message.

    Args:
        code: Status code name (case-insensitive), or None
        message: Detail text reported with the termination

    Returns:
        ErrorClass.RETRYABLE or ErrorClass.FATAL
    """
    normalized = code.strip().upper() if code else None

    if normalized in RETRYABLE_CODES:
        return ErrorClass.RETRYABLE

    if normalized in FATAL_CODES:
        return ErrorClass.FATAL

    text = message.lower()
    if any(pattern in text for pattern in TRANSIENT_MESSAGE_PATTERNS):
        return ErrorClass.RETRYABLE

    return ErrorClass.FATAL


def classify_exception(error: BaseException) -> ErrorClass:
    """
    Classify an exception raised while opening or reading a stream.

    TransportError is classified by its code and message. Plain connection,
    timeout and network-unreachable OS errors are retryable. Anything else,
    including permission and certificate errors, is fatal.

    Args:
        error: The exception to classify

    Returns:
        ErrorClass.RETRYABLE or ErrorClass.FATAL
    """
    if isinstance(error, TransportError):
        return classify(error.code, error.message)

    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return ErrorClass.RETRYABLE

    if isinstance(error, OSError) and error.errno in TRANSIENT_ERRNOS:
        return ErrorClass.RETRYABLE

    return ErrorClass.FATAL


def error_code(error: BaseException) -> str | None:
    """Get the status code carried by an exception, if any."""
    if isinstance(error, TransportError):
        return error.code
    return None


__all__ = [
    "ErrorClass",
    "RETRYABLE_CODES",
    "FATAL_CODES",
    "TRANSIENT_MESSAGE_PATTERNS",
    "TRANSIENT_EXCEPTIONS",
    "TRANSIENT_ERRNOS",
    "classify",
    "classify_exception",
    "error_code",
]
