from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import make_asgi_app

from llmgateway.api.health import router as health_router
from llmgateway.api.llm import router as llm_router
from llmgateway.config import Settings, settings
from llmgateway.providers import LLMGateway


def configure_logging(level_name: str) -> None:
    """JSON logs to stdout, filtered at *level_name* (unknown names mean INFO)."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.stdlib.NAME_TO_LEVEL.get(level_name.lower(), 20)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_tracing(config: Settings) -> TracerProvider:
    """Install a global tracer provider exporting spans over OTLP/HTTP."""
    provider = TracerProvider(resource=Resource.create({"service.name": config.otel_service_name}))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{config.otel_exporter_otlp_endpoint}/v1/traces"))
    )
    trace.set_tracer_provider(provider)
    return provider


configure_logging(settings.log_level)
log = structlog.get_logger()
tracer_provider = configure_tracing(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # The get_gateway() dependency reads the shared gateway from app.state.
    gateway = LLMGateway.from_settings(settings)
    configured = await gateway.initialize()
    app.state.gateway = gateway
    log.info(
        "LLM Gateway ready",
        host=settings.host,
        port=settings.port,
        configured=configured,
        provider=settings.llm_provider,
        model=settings.llm_model,
        llm_timeout_ms=settings.llm_timeout_ms,
        llm_max_retries=settings.llm_max_retries,
        llm_dedup=settings.llm_dedup,
        otel_endpoint=settings.otel_exporter_otlp_endpoint,
    )

    yield

    log.info("LLM Gateway shutting down")
    await gateway.aclose()
    tracer_provider.shutdown()


app = FastAPI(
    title="LLM Gateway",
    version=settings.app_version,
    description=(
        "Multi-provider LLM request gateway with normalized responses, "
        "request deduplication, tool-calling recovery and full observability."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# llm_gateway_requests_total and the default process collectors
app.mount("/metrics", make_asgi_app())

app.include_router(health_router)
app.include_router(llm_router)

# Instrument *after* routes are registered
FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
