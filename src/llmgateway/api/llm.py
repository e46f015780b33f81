"""LLM gateway endpoints under ``/v1/llm``.

* ``GET  /v1/llm/status``   readiness of the persisted configuration
* ``POST /v1/llm/generate`` one chat call through :meth:`LLMGateway.generate`
* ``POST /v1/llm/test``     connection probe for an ad hoc configuration

Error bodies use the ``{"success": false, "error": ...}`` shape and gateway
errors are mapped to HTTP status codes through ``_ERROR_STATUS``.
"""

import time
import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.trace import StatusCode
from pydantic import AliasChoices, BaseModel, Field

from llmgateway.providers import (
    AuthError,
    ConfigurationError,
    ConnectionTester,
    InvalidRequestError,
    LLMConfig,
    LLMGateway,
    LLMGatewayError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    TimeoutError,
    TransportError,
    UnsupportedProviderError,
    UpstreamError,
    requires_api_key,
)
from llmgateway.providers.profiles import normalize_provider

router = APIRouter(prefix="/v1/llm", tags=["llm"])

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

# ---------------------------------------------------------------------------
# HTTP status codes for each gateway error type
# ---------------------------------------------------------------------------
_ERROR_STATUS: dict[type[ProviderError], int] = {
    RateLimitError: 429,
    AuthError: 401,
    TimeoutError: 504,
    TransportError: 502,
    InvalidRequestError: 400,
    UnsupportedProviderError: 400,
    ConfigurationError: 503,
    ProviderUnavailableError: 502,
    UpstreamError: 502,
}


def _status_for(exc: ProviderError) -> int:
    """Most specific status for *exc*, looking through the gateway wrapper."""
    cause = exc.original_error if isinstance(exc, LLMGatewayError) else exc
    for error_type in type(cause).__mro__:
        if error_type in _ERROR_STATUS:
            return _ERROR_STATUS[error_type]
    return 500


def _error(status_code: int, message: str, headers: dict[str, str] | None = None, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class GenerateBody(BaseModel):
    messages: list[dict[str, Any]] | None = None
    max_tokens: int | None = Field(default=None, validation_alias=AliasChoices("max_tokens", "maxTokens"))
    temperature: float | None = None
    top_p: float | None = Field(default=None, validation_alias=AliasChoices("top_p", "topP"))
    # HTTP callers get plain text unless they opt in to the action tools.
    disable_tool_bridge: bool = True
    phase: str = "api_generate"


class ConnectionTestBody(BaseModel):
    provider: str | None = None
    model: str | None = None
    api_url: str | None = Field(default=None, validation_alias=AliasChoices("api_url", "apiUrl"))
    api_key: str | None = Field(default=None, validation_alias=AliasChoices("api_key", "apiKey"))
    endpoint_path: str | None = Field(
        default=None, validation_alias=AliasChoices("endpoint_path", "endpointPath")
    )


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def get_gateway(request: Request) -> LLMGateway:
    """Return the shared :class:`LLMGateway` from ``app.state``."""
    gateway: LLMGateway | None = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Gateway not initialised")
    return gateway


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/status")
async def llm_status(gateway: LLMGateway = Depends(get_gateway)) -> JSONResponse:
    """Report whether the persisted configuration can serve requests."""
    status = await gateway.status()
    return JSONResponse(content={"success": True, **status.as_dict()})


@router.post("/generate")
async def generate(body: GenerateBody, gateway: LLMGateway = Depends(get_gateway)) -> JSONResponse:
    """Run one chat call with the persisted configuration."""
    if not body.messages:
        return _error(400, "Messages array is required")

    status = await gateway.status()
    if not status.ready:
        return _error(
            503,
            "LLM is not configured",
            configured=status.configured,
            ready=status.ready,
            reason=status.reason,
        )
    if gateway.config is None:
        await gateway.initialize()

    request_id = str(uuid.uuid4())
    start_time = time.monotonic()
    log = _log.bind(request_id=request_id, provider=status.provider, model=status.model)
    log.info("generate_request_start", message_count=len(body.messages))

    options = {
        "max_tokens": body.max_tokens or 1000,
        "temperature": 0.7 if body.temperature is None else body.temperature,
        "top_p": body.top_p,
        "disable_tool_bridge": body.disable_tool_bridge,
        "request_type": "api_generate",
        "phase": body.phase,
    }
    try:
        text = await gateway.generate(body.messages, options)
    except ProviderError as exc:
        status_code = _status_for(exc)
        log.error(
            "generate_request_error",
            error_type=type(exc).__name__,
            error=exc.message,
            status_code=status_code,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        cause = exc.original_error if isinstance(exc, LLMGatewayError) else exc
        headers = None
        if isinstance(cause, RateLimitError) and cause.retry_after is not None:
            headers = {"Retry-After": str(int(cause.retry_after))}
        return _error(status_code, exc.message, headers=headers)

    log.info("generate_request_complete", duration_ms=round((time.monotonic() - start_time) * 1000, 2))
    config = gateway.config
    return JSONResponse(
        content={
            "success": True,
            "response": text,
            "model": config.model if config else status.model,
            "provider": config.provider if config else status.provider,
        },
        headers={"X-Request-ID": request_id},
    )


@router.post("/test")
async def probe_config(body: ConnectionTestBody, gateway: LLMGateway = Depends(get_gateway)) -> JSONResponse:
    """Probe an ad hoc provider configuration without persisting it.

    When no key is supplied for a provider that needs one, the stored key is
    reused if the provider matches the persisted configuration.
    """
    if not body.provider or not body.model:
        return _error(400, "Provider and model are required")
    if not body.api_url:
        return _error(400, "API URL is required")

    api_key = body.api_key
    if not api_key and requires_api_key(body.provider):
        if gateway.config is None:
            await gateway.initialize()
        stored = gateway.config
        if stored and stored.api_key and normalize_provider(stored.provider) == normalize_provider(body.provider):
            api_key = stored.api_key
        else:
            return _error(400, "API key is required for this provider")

    override = LLMConfig(
        provider=body.provider,
        model=body.model,
        api_url=body.api_url,
        api_key=api_key,
        endpoint_path=body.endpoint_path,
        requires_api_key=requires_api_key(body.provider),
    )

    with _tracer.start_as_current_span("gateway.llm_test") as span:
        span.set_attribute("gen_ai.system", body.provider)
        span.set_attribute("gen_ai.request.model", body.model)
        result = await ConnectionTester(gateway).test(override)
        if not result.success:
            span.set_status(StatusCode.ERROR, result.error or "")

    if not result.success:
        return _error(400, result.error or "Unknown error", error_kind=result.error_kind)
    return JSONResponse(
        content={
            "success": True,
            "model": result.model,
            "response_time": result.response_time_ms,
            "message": "Configuration test successful",
        }
    )
