from typing import Any, Dict, Optional


class LoaderError(Exception):
    """Base class for record loader errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "LOADER_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ConversionError(LoaderError):
    """A raw value cannot be coerced to its field's declared type."""

    PREFIX = "Error converting value to correct data type: "

    def __init__(self, reason: str, field: Optional[str] = None):
        super().__init__(
            self.PREFIX + reason,
            "CONVERSION_ERROR",
            {"field": field} if field else None,
        )
        self.reason = reason
        self.field = field


class TransportError(LoaderError):
    """A remote call failed and will not be retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSPORT_ERROR", details)


class TransientTransportError(TransportError):
    """A remote call failed in a way that may succeed on retry."""


class RateLimitError(TransientTransportError):
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, {"retry_after": retry_after} if retry_after else None)
        self.retry_after = retry_after


class SetupError(LoaderError):
    """Unrecoverable configuration or resource problem; aborts the run."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SETUP_ERROR", details)


class ObjectTypeNotFound(SetupError):
    def __init__(self, object_type: str):
        super().__init__(
            f"Object type '{object_type}' does not exist",
            {"object_type": object_type},
        )
        self.object_type = object_type
