from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace

from llmgateway.config import settings

router = APIRouter(prefix="/health", tags=["health"])
log = structlog.get_logger()
tracer = trace.get_tracer(__name__)


@router.get("")
async def health() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": settings.app_version,
        }
    )


@router.get("/live")
async def liveness() -> JSONResponse:
    """Kubernetes liveness probe: always returns 200 if the process is running."""
    return JSONResponse(content={"status": "alive"})


@router.get("/ready")
async def readiness(request: Request) -> JSONResponse:
    """Kubernetes readiness probe. Checks that the persisted LLM configuration is usable.

    No request is sent upstream; use ``POST /v1/llm/test`` for a live probe.
    """
    checks: dict[str, str] = {}
    errors: dict[str, str] = {}

    with tracer.start_as_current_span("health.readiness"):
        with tracer.start_as_current_span("health.check.llm_config"):
            gateway = getattr(request.app.state, "gateway", None)
            if gateway is None:
                errors["llm"] = "Gateway not initialised"
            else:
                status = await gateway.status()
                if status.ready:
                    checks["llm"] = "ok"
                    log.debug("LLM configuration check succeeded", provider=status.provider)
                else:
                    errors["llm"] = status.reason or "not ready"
                    log.warning("LLM configuration check failed", reason=status.reason)

    if errors:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "checks": checks, "errors": errors},
        )

    return JSONResponse(content={"status": "ready", "checks": checks})
