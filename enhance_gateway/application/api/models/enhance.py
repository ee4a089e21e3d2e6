"""
Enhancement API Models

Response shapes for single and batch enhancement and job polling. Requests
are multipart uploads, so their fields are declared on the routes.
"""

from typing import Any

from pydantic import BaseModel, Field


class EnhanceResponse(BaseModel):
    """
    Single document outcome.

    ``status`` is ``cached`` (HTTP 200, prior result attached) or ``queued``
    (HTTP 202, poll ``job_id``).
    """

    status: str
    document_id: str
    job_id: str | None = None
    enhancement_id: str | None = None
    result_url: str | None = None
    cache_match: str | None = Field(default=None, description="exact or near")
    fallback: bool = Field(default=False, description="Served from cache while the circuit is open")


class BatchItemResponse(BaseModel):
    index: int
    file_name: str
    document_id: str
    status: str
    job_id: str | None = None
    enhancement_id: str | None = None
    result_url: str | None = None
    cache_match: str | None = None
    error_code: str | None = None
    error: str | None = None


class BatchResponse(BaseModel):
    batch_id: str
    status: str = Field(description="accepted, partial, aborted or failed")
    aborted: bool
    total_files: int
    queued_files: int
    cached_files: int
    failed_files: int
    results: list[BatchItemResponse]


class BatchRecordResponse(BatchResponse):
    owner_id: str
    stop_on_error: bool
    created_at: int


class JobStatusResponse(BaseModel):
    job_id: str
    state: str
    priority: str
    attempt: int
    max_attempts: int
    document_id: str | None = None
    batch_id: str | None = None
    result: dict[str, Any] | None = None
    last_error: str | None = None
    created_at: int
    updated_at: int
