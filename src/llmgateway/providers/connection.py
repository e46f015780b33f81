"""Connection probe for a provider configuration.

Sends a tiny deterministic request straight through
:meth:`LLMGateway.request` (no dedup, no recovery) and reports the outcome as
a :class:`ConnectionTestResult` instead of raising.
"""

import time
from dataclasses import dataclass
from typing import Any, Final

import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from llmgateway.providers.collaborators import AuditRecord
from llmgateway.providers.errors import ProviderError, TransportError, UpstreamError
from llmgateway.providers.extractor import extract_response, message_from_body
from llmgateway.providers.models import LLMConfig

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

TEST_MESSAGES: Final[tuple[dict[str, str], ...]] = (
    {"role": "user", "content": 'Test connection - respond with "OK"'},
)
TEST_MAX_TOKENS: Final[int] = 10

NO_RESPONSE_MESSAGE: Final[str] = "No response from API server - check URL and network connectivity"


@dataclass(frozen=True)
class ConnectionTestResult:
    """Outcome of one probe.

    Attributes:
        success: The provider answered with a 2xx response.
        model: Model that was probed.
        response_time_ms: Wall time of the probe.
        response: Extracted text of a successful answer.
        error: Failure message.
        error_kind: ``"api"`` (a response arrived), ``"network"`` (no
            response) or ``"setup"`` (the request could not be built).
    """

    success: bool
    model: str | None = None
    response_time_ms: float | None = None
    response: str | None = None
    error: str | None = None
    error_kind: str | None = None


def _api_error_message(exc: UpstreamError) -> str:
    message = message_from_body(exc.body)
    if message:
        return message
    if exc.status_code:
        return f"HTTP {exc.status_code}: {exc.reason}" if exc.reason else f"HTTP {exc.status_code}"
    return "Unknown error"


class ConnectionTester:
    """Probes the gateway's persisted configuration or an ad hoc override."""

    def __init__(self, gateway: Any) -> None:
        self._gateway = gateway

    async def test(self, override: LLMConfig | None = None) -> ConnectionTestResult:
        """Send the probe request and classify the outcome.

        Only probes of the persisted configuration (``override is None``)
        are audited.
        """
        config = override
        if config is None:
            if self._gateway.config is None:
                await self._gateway.initialize()
            config = self._gateway.config
        if config is None:
            return ConnectionTestResult(
                success=False,
                error="No LLM configuration available. Please configure an LLM provider first.",
                error_kind="setup",
            )

        payload = {
            "messages": [dict(m) for m in TEST_MESSAGES],
            "max_tokens": TEST_MAX_TOKENS,
            "temperature": 0,
        }

        with _tracer.start_as_current_span("llm.connection_test") as span:
            span.set_attribute("gen_ai.system", config.provider or "unknown")
            span.set_attribute("gen_ai.request.model", config.model or "")
            span.set_attribute("llm.override", override is not None)

            start = time.monotonic()
            try:
                response = await self._gateway.request(config, payload)
            except UpstreamError as exc:
                result = self._failure(config, start, _api_error_message(exc), "api")
            except TransportError:
                result = self._failure(config, start, NO_RESPONSE_MESSAGE, "network")
            except ProviderError as exc:
                result = self._failure(config, start, exc.message, "setup")
            else:
                result = ConnectionTestResult(
                    success=True,
                    model=config.model,
                    response_time_ms=round((time.monotonic() - start) * 1000, 2),
                    response=extract_response(config.provider, response.body),
                )

            if not result.success:
                span.set_status(StatusCode.ERROR, result.error or "")
            _log.info(
                "llm_connection_test",
                provider=config.provider,
                model=config.model,
                success=result.success,
                error_kind=result.error_kind,
                error=result.error,
                response_time_ms=result.response_time_ms,
            )

        if override is None and self._gateway.audit_sink is not None:
            await self._gateway.audit_sink.record(
                AuditRecord(
                    provider=config.provider,
                    model=config.model,
                    request_type="test",
                    success=result.success,
                    error_message=result.error,
                    response_time_ms=result.response_time_ms,
                )
            )
        return result

    @staticmethod
    def _failure(config: LLMConfig, start: float, message: str, kind: str) -> ConnectionTestResult:
        return ConnectionTestResult(
            success=False,
            model=config.model,
            response_time_ms=round((time.monotonic() - start) * 1000, 2),
            error=message,
            error_kind=kind,
        )
