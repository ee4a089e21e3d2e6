"""
Health Check Routes

- GET /health           liveness: the process is up; checks nothing
- GET /health/ready     readiness: the shared store answers a ping (503 if not)
- GET /health/circuits  state of every circuit breaker
- GET /metrics          Prometheus exposition
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from enhance_gateway.application.api.dependencies import ContainerDep
from enhance_gateway.core.exceptions import StoreError
from enhance_gateway.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])
metrics_router = APIRouter(tags=["Monitoring"])


class HealthResponse(BaseModel):
    status: str  # healthy, unhealthy
    timestamp: str
    components: dict | None = None


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", response_model=HealthResponse)
async def health_check():
    return HealthResponse(status="healthy", timestamp=_timestamp())


@router.get("/ready", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
async def readiness_check(container: ContainerDep):
    try:
        store_ok = await container.store.ping()
    except StoreError as e:
        logger.warning("Readiness check failed", component="store", error=str(e))
        store_ok = False

    components = {
        "store": "healthy" if store_ok else "unhealthy",
        "job_worker": "running" if container.worker.is_running else "stopped",
        "webhook_delivery": "running" if container.webhook_delivery.is_running else "stopped",
    }
    body = HealthResponse(
        status="healthy" if store_ok else "unhealthy",
        timestamp=_timestamp(),
        components=components,
    )
    return JSONResponse(status_code=200 if store_ok else 503, content=body.model_dump())


@router.get("/circuits")
async def circuit_states(container: ContainerDep):
    return {"timestamp": _timestamp(), "circuits": await container.breakers.get_all_stats()}


@metrics_router.get("/metrics")
async def prometheus_metrics(container: ContainerDep):
    return Response(
        content=container.metrics.get_prometheus_metrics(),
        media_type=container.metrics.get_content_type(),
    )
