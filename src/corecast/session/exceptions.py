"""
Session-specific exceptions.

All exceptions inherit from SessionError for easy catching.
This module follows the same patterns as corecast.exceptions.
"""

from corecast.exceptions import CorecastError


class SessionError(CorecastError):
    """Base exception for session-related errors."""

    pass


class SessionStateError(SessionError):
    """Raised when a control operation is invalid for the current state."""

    pass
