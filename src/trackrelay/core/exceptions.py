"""
Custom exceptions for TrackRelay.

Decode and classification failures are fatal for an invocation and propagate
to the runtime. Gateway failures are not exceptions; see DispatchOutcome.
"""

from typing import Any, Dict, Optional


class TrackRelayException(Exception):
    """Base exception for TrackRelay."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class DecodeError(TrackRelayException):
    """Raised when a payload does not parse into a tracking update."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=422,
            error_code="decode_error",
            details=details,
        )


class MissingDataError(TrackRelayException):
    """Raised when a decoded update has no usable tracking response."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=422,
            error_code="missing_data",
            details=details,
        )


class PublishError(TrackRelayException):
    """Raised when a message could not be published to a topic."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="publish_error",
            details=details,
        )


class ConfigurationError(TrackRelayException):
    """Raised when the runtime cannot start with the given settings."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )
