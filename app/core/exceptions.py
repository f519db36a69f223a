"""Custom exception types for domain and API layers."""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base app exception. ``message`` is safe to return to clients."""

    status_code = 500

    def __init__(self, message: str = "Something went wrong", **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class AuthenticationError(AppError):
    """Missing, invalid or expired credential, or an inactive account."""

    status_code = 401


class AuthorizationError(AppError):
    """Authenticated caller lacks a required permission."""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions", **context: Any):
        super().__init__(message, **context)


class NotFoundError(AppError):
    """Resource absent or not owned by the caller."""

    status_code = 404


class ValidationError(AppError):
    """Validation failure for user input."""

    status_code = 400


class UpstreamError(AppError):
    """External integration call failure. Detail stays server-side."""

    status_code = 502
    public_message = "Upstream service error"

    def __init__(self, message: str = "Upstream service error", **context: Any):
        super().__init__(message, **context)


class IntegrationNotConfigured(UpstreamError):
    """An integration was called without its credentials configured."""

    status_code = 503
    public_message = "Integration is not configured"


class WebhookSignatureError(AppError):
    """Inbound webhook failed authenticity verification."""

    status_code = 400

    def __init__(self, message: str = "Invalid webhook signature", **context: Any):
        super().__init__(message, **context)
