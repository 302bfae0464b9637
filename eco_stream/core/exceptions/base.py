"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions inherit from.
All specialized exceptions are in their respective themed modules.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any


class EcoStreamError(Exception):
    """
    Base exception for all Eco streaming errors.

    All custom exceptions inherit from this class to enable:
    - Consistent error handling
    - Stream ID correlation
    - Structured error logging

    Attributes:
        message: Error message (safe to show to the end user)
        stream_id: Correlation ID of the stream (if available)
        details: Additional error details (dict)

    Example:
        raise ProtocolError(
            "A Eco está indisponível no momento.",
            stream_id="6f1c...",
            status=502,
            details={"body": "Bad Gateway"},
        )
    """

    def __init__(
        self, message: str, stream_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.stream_id = stream_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging/API responses.

        Returns:
            Dict with error_type, message, stream_id, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "stream_id": self.stream_id,
            "details": self.details,
        }

    def with_context(self, **context) -> "EcoStreamError":
        """
        Add additional context to the error details.

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        stream_id_str = f", stream_id='{self.stream_id}'" if self.stream_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{stream_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        stream_id: str | None = None,
        **details
    ) -> "EcoStreamError":
        """
        Create an EcoStreamError from another exception.

        Useful for wrapping httpx exceptions with additional context.

        Example:
            >>> try:
            ...     response = await client.send(request, stream=True)
            ... except httpx.ConnectError as e:
            ...     raise TransportError.from_exception(e, stream_id="6f1c...")
        """
        error_message = message or str(exc) or exc.__class__.__name__
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, stream_id=stream_id, details=error_details)


class ConfigurationError(EcoStreamError):
    """Raised when configuration is invalid or missing."""
    pass
