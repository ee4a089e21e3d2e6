"""
Request Validation Exceptions

Author: System Architect
Date: 2025-12-08
"""

from enhance_gateway.core.exceptions.base import GatewayError


class ValidationError(GatewayError):
    """
    Raised when caller input is invalid. Not retriable: the caller must fix the input.

    Common causes:
    - Empty or oversized upload
    - Unsupported content type
    - Batch larger than the allowed maximum
    - Webhook URL or retry policy out of bounds
    """
    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationRequiredError(GatewayError):
    """Raised when no verified user identity reached the gateway."""
    code = "AUTHENTICATION_REQUIRED"
    status_code = 401


class NotFoundError(GatewayError):
    """Raised when a resource does not exist or belongs to another owner."""
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(GatewayError):
    """Raised when a state transition is not allowed (e.g. retrying a delivered webhook)."""
    code = "CONFLICT"
    status_code = 409
