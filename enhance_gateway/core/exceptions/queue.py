"""
Job Queue Exceptions

Author: System Architect
Date: 2025-12-08
"""

from enhance_gateway.core.exceptions.base import GatewayError


class QueueError(GatewayError):
    """Base exception for job queue errors."""
    code = "QUEUE_ERROR"
    status_code = 500


class QueueConnectionError(QueueError):
    """
    Raised when the queue backend cannot be reached.

    Transient: enqueue retries on this before giving up.
    """
    retriable = True


class JobEnqueueError(QueueError):
    """
    Raised when a job could not be handed to the queue after retries.

    Surfaced as HTTP 500 for single requests; captured per item in batches.
    """
    code = "JOB_ENQUEUE_FAILED"


class JobNotFoundError(QueueError):
    """Raised when a job ID is unknown."""
    code = "NOT_FOUND"
    status_code = 404


class JobProcessingError(QueueError):
    """Raised by an enhancement processor when a job run fails."""
    code = "JOB_PROCESSING_FAILED"
    retriable = True
