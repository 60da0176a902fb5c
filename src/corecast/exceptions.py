"""Library exceptions for the corecast package."""


class CorecastError(Exception):
    """Base exception for corecast library."""

    pass


class ConfigurationError(CorecastError):
    """Raised when client configuration is missing or invalid."""

    pass


class TransportError(CorecastError, ConnectionError):
    """
    Raised when the transport cannot open or continue a subscription.

    Attributes:
        code: Status code name reported by the transport (e.g. "UNAVAILABLE"),
            or None when the failure carried no code
        message: Human-readable detail reported by the transport
    """

    def __init__(self, code: str | None, message: str = "") -> None:
        self.code = code
        self.message = message
        label = code or "NO_CODE"
        super().__init__(f"{label}: {message}" if message else label)
