"""
Error types for the changes SDK.

This module defines all exception types raised or emitted by the SDK:
- ChangesError: Base exception
- ConfigurationError: Invalid reader options
- TransportError: A single exchange with the server failed
- TransientServerError: Failure worth retrying (429, 5xx, network)
- MalformedResponseError: Response body could not be interpreted
- FatalServerError: Failure that stops the feed (4xx except 429)

Invariants:
    - All errors inherit from ChangesError
    - A TransportError without a status code never stops the feed
    - Classification depends only on the status code
"""

from __future__ import annotations

from typing import Any, Dict, Optional

TOO_MANY_REQUESTS = 429


class ChangesError(Exception):
    """Base exception for all changes SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CHANGES_ERROR"
        self.details = details or {}


class ConfigurationError(ChangesError):
    """Reader options failed validation.

    Raised synchronously by configure()/start(); the loop never starts.
    """

    def __init__(self, message: str, option: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"option": option},
        )
        self.option = option


def is_fatal_status(status_code: Optional[int]) -> bool:
    """Whether a response status means polling must stop.

    Client errors (400-499) are fatal except 429, which is the server asking
    us to slow down. Server errors and status-less failures are transient.
    """
    if status_code is None:
        return False
    return 400 <= status_code < 500 and status_code != TOO_MANY_REQUESTS


class TransportError(ChangesError):
    """One exchange with the server failed.

    Attributes:
        status_code: HTTP status, or None for network/parse failures
        reason: Server-supplied reason string, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        code: str = "TRANSPORT_ERROR",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"status_code": status_code, "reason": reason},
        )
        self.status_code = status_code
        self.reason = reason

    @property
    def fatal(self) -> bool:
        """Whether this failure stops the feed."""
        return is_fatal_status(self.status_code)


class TransientServerError(TransportError):
    """Retryable failure: 429, any 5xx, or no status at all."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(message, status_code, reason, code="TRANSIENT_SERVER_ERROR")


class MalformedResponseError(TransientServerError):
    """Response body was not a changes page.

    Carries no status code, so it is retried on the same position.
    """

    def __init__(self, message: str, body: Any = None) -> None:
        super().__init__(message)
        self.code = "MALFORMED_RESPONSE"
        self.details["body_type"] = type(body).__name__
        self.body = body


class FatalServerError(TransportError):
    """Non-retryable client error, e.g. bad credentials or an invalid since."""

    def __init__(
        self,
        message: str,
        status_code: int,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(message, status_code, reason, code="FATAL_SERVER_ERROR")


def error_for_status(status_code: int, reason: Optional[str] = None) -> TransportError:
    """Build the error class matching an HTTP status.

    Args:
        status_code: HTTP response status
        reason: Optional reason from the response body

    Returns:
        FatalServerError or TransientServerError
    """
    message = f"Changes request failed with status {status_code}"
    if reason:
        message += f": {reason}"
    if is_fatal_status(status_code):
        return FatalServerError(message, status_code, reason)
    return TransientServerError(message, status_code, reason)
