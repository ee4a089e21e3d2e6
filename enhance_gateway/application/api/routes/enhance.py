"""
Enhancement Routes

POST /enhance                 single upload; 200 from cache, 202 when queued
GET  /enhance/jobs/{job_id}   job polling
POST /enhance/batch           up to 10 uploads; per-file outcomes
GET  /enhance/batch/{id}      batch summary (kept 24h)

Mutating routes run through the admission pipeline for their operation.
"""

from typing import Annotated

from fastapi import APIRouter, File, Form, Response, UploadFile, status
from fastapi.responses import JSONResponse

from enhance_gateway.application.api.dependencies import (
    ClientIpDep,
    ContainerDep,
    UserIdDep,
    build_context,
    build_pipeline,
)
from enhance_gateway.application.api.models import (
    BatchRecordResponse,
    BatchResponse,
    EnhanceResponse,
    JobStatusResponse,
)
from enhance_gateway.core.config.constants import OPERATION_BATCH_ENHANCE, OPERATION_ENHANCE
from enhance_gateway.core.exceptions import ValidationError
from enhance_gateway.core.interfaces import JobPriority
from enhance_gateway.services.document_cache import CacheMatch
from enhance_gateway.services.job_dispatcher import EnhancementItem, ItemStatus
from enhance_gateway.services.request_pipeline import RequestContext

router = APIRouter(prefix="/enhance", tags=["Enhancement"])


def _parse_priority(priority: str) -> JobPriority:
    try:
        return JobPriority.parse(priority)
    except ValueError as e:
        raise ValidationError(
            str(e), details={"field": "priority", "allowed": [p.name.lower() for p in JobPriority]}
        ) from e


@router.post(
    "",
    response_model=EnhanceResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={200: {"model": EnhanceResponse, "description": "Served from cache"}},
)
async def enhance_document(
    container: ContainerDep,
    user_id: UserIdDep,
    client_ip: ClientIpDep,
    file: Annotated[UploadFile, File(description="Document to enhance")],
    priority: Annotated[str, Form()] = "normal",
):
    item = EnhancementItem(
        owner_id=user_id,
        file_name=file.filename or "",
        content=await file.read(),
        content_type=file.content_type,
        priority=_parse_priority(priority),
    )
    ctx = build_context(OPERATION_ENHANCE, user_id, client_ip, payload=item)

    async def handler(ctx: RequestContext):
        return await container.enhancement.enhance_single(ctx.payload)

    async def serve_cached(ctx: RequestContext) -> CacheMatch | None:
        return await container.enhancement.cached_result(ctx.user_id, ctx.payload.content)

    outcome = await build_pipeline(container, OPERATION_ENHANCE, handler, fallback=serve_cached).execute(ctx)

    if isinstance(outcome, CacheMatch):
        body = EnhanceResponse(
            status=ItemStatus.CACHED.value,
            document_id=outcome.entry.document_id,
            enhancement_id=outcome.entry.enhancement_id,
            result_url=outcome.entry.result_url,
            cache_match=outcome.match,
            fallback=True,
        )
        code = status.HTTP_200_OK
    else:
        body = EnhanceResponse(
            status=outcome.status.value,
            document_id=outcome.document_id,
            job_id=outcome.job_id,
            enhancement_id=outcome.enhancement_id,
            result_url=outcome.result_url,
            cache_match=outcome.cache_match,
        )
        code = status.HTTP_200_OK if outcome.status == ItemStatus.CACHED else status.HTTP_202_ACCEPTED

    return JSONResponse(status_code=code, content=body.model_dump(), headers=ctx.response_headers)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, container: ContainerDep, user_id: UserIdDep):
    return await container.enhancement.get_job_status(user_id, job_id)


@router.post("/batch", response_model=BatchResponse)
async def enhance_batch(
    response: Response,
    container: ContainerDep,
    user_id: UserIdDep,
    client_ip: ClientIpDep,
    files: Annotated[list[UploadFile], File(description="Up to 10 documents")],
    stop_on_error: Annotated[bool, Form()] = False,
    priority: Annotated[str, Form()] = "normal",
):
    max_files = container.dispatcher.max_batch_size
    if len(files) > max_files:
        raise ValidationError(
            f"Batch size exceeds limit (max: {max_files})",
            details={"field": "files", "count": len(files), "max": max_files},
        )

    resolved_priority = _parse_priority(priority)
    items = [
        EnhancementItem(
            owner_id=user_id,
            file_name=upload.filename or "",
            content=await upload.read(),
            content_type=upload.content_type,
            priority=resolved_priority,
        )
        for upload in files
    ]
    ctx = build_context(OPERATION_BATCH_ENHANCE, user_id, client_ip, payload=items)

    async def handler(ctx: RequestContext):
        return await container.enhancement.enhance_batch(ctx.user_id, ctx.payload, stop_on_error=stop_on_error)

    result = await build_pipeline(container, OPERATION_BATCH_ENHANCE, handler).execute(ctx)
    response.headers.update(ctx.response_headers)
    return result.to_dict()


@router.get("/batch/{batch_id}", response_model=BatchRecordResponse)
async def get_batch(batch_id: str, container: ContainerDep, user_id: UserIdDep):
    return await container.enhancement.get_batch(user_id, batch_id)
