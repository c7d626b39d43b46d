"""
Error Taxonomy
==============
Every failure the registration workflow can surface to an HTTP caller.

Each error carries the HTTP status it maps to and a short machine-readable
code. The API layer renders them as ``{"success": false, "error": ..., "code": ...}``.
"""

from typing import Any, Optional


class RegistrationError(Exception):
    """Base class for workflow errors."""

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(RegistrationError):
    """Missing or malformed request fields."""
    status_code = 400
    code = "validation_error"


class NotFoundError(RegistrationError):
    """Unknown registration or order identifier."""
    status_code = 404
    code = "not_found"


class InvalidSignatureError(RegistrationError):
    """Client or webhook signature did not match the expected HMAC."""
    status_code = 400
    code = "invalid_signature"


class GatewayConfigError(RegistrationError):
    """Gateway credentials are missing."""
    status_code = 500
    code = "gateway_not_configured"


class GatewayRequestError(RegistrationError):
    """
    The payment gateway rejected or failed a request.

    ``details`` holds the upstream error payload so the caller can see
    what the provider actually said.
    """
    status_code = 500
    code = "gateway_request_failed"

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        upstream_status: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.upstream_status = upstream_status


class GatewayTimeoutError(GatewayRequestError):
    status_code = 504
    code = "gateway_timeout"
    retryable = True


class NotificationError(RegistrationError):
    """Email dispatch failed. Logged, never surfaced to the caller."""
    code = "notification_failed"
