"""
Shared Store Exceptions

Author: System Architect
Date: 2025-12-08
"""

from enhance_gateway.core.exceptions.base import GatewayError


class StoreError(GatewayError):
    """
    Base exception for shared store errors.

    Common causes:
    - Redis command error
    - Corrupt record that cannot be decoded
    """
    code = "STORE_ERROR"
    status_code = 500


class StoreConnectionError(StoreError):
    """Raised when the shared store is unreachable."""
    retriable = True
