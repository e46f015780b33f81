"""HTTP transport: one JSON POST to a provider, with typed errors and retries.

This is the only module that talks to the network.  It adds what a bare
``httpx`` call does not provide:

* Typed exception hierarchy (:mod:`llmgateway.providers.errors`)
* OpenTelemetry ``llm.api_call`` spans
* Exponential-backoff retry (tenacity) on transient failures only
* Opt-in logging of outbound bodies (``LLM_DEBUG``)
"""

from typing import Any

import httpx
import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from llmgateway.providers.endpoints import DEFAULT_TIMEOUT_MS
from llmgateway.providers.errors import (
    AuthError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    RequestSetupError,
    TimeoutError,
    ToolSchemaError,
    TransportError,
    UpstreamError,
)
from llmgateway.providers.extractor import message_from_body
from llmgateway.providers.models import TransportResponse
from llmgateway.providers.retry import match_recovery_rule

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

_TRANSIENT_ERRORS = (RateLimitError, TimeoutError, ProviderUnavailableError)


def _before_sleep(retry_state: RetryCallState) -> None:
    """Tenacity ``before_sleep`` hook that emits a structured warning."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    next_action = retry_state.next_action
    wait_seconds = next_action.sleep if next_action is not None else 0.0
    _log.warning(
        "llm_transport_retry",
        attempt=retry_state.attempt_number,
        wait_seconds=round(wait_seconds, 2),
        error_type=type(exc).__name__ if exc else None,
        error=str(exc) if exc else None,
    )


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def upstream_error(
    status_code: int,
    body: Any,
    headers: dict[str, str],
    reason: str,
    provider: str | None,
    carried_tools: bool,
) -> UpstreamError:
    """Map a non-success response to the matching :class:`UpstreamError` subclass.

    Mapping table:

    ==================================  ==================================
    Response                            Gateway exception
    ==================================  ==================================
    message matches a recovery rule     :class:`ToolSchemaError`
    HTTP 429                            :class:`RateLimitError`
    HTTP 401 / 403                      :class:`AuthError`
    HTTP 5xx                            :class:`ProviderUnavailableError`
    anything else                       :class:`UpstreamError`
    ==================================  ==================================
    """
    message = message_from_body(body)
    if message is None and isinstance(body, str) and body.strip():
        message = body.strip()
    if message is None:
        message = f"HTTP {status_code}: {reason}" if reason else f"HTTP {status_code}"

    kwargs: dict[str, Any] = {
        "status_code": status_code,
        "body": body,
        "headers": headers,
        "reason": reason,
        "provider": provider,
    }
    if match_recovery_rule(message, carried_tools) is not None:
        return ToolSchemaError(message, **kwargs)
    if status_code == 429:
        return RateLimitError(message, **kwargs)
    if status_code in (401, 403):
        return AuthError(message, **kwargs)
    if status_code >= 500:
        return ProviderUnavailableError(message, **kwargs)
    return UpstreamError(message, **kwargs)


class HttpTransport:
    """Posts JSON bodies to provider endpoints over a shared ``httpx.AsyncClient``.

    Args:
        client: Client to use.  Created lazily (and owned) when omitted.
        max_retries: Maximum number of attempts for transient failures.
            Only :class:`~llmgateway.providers.errors.RateLimitError`,
            :class:`~llmgateway.providers.errors.TimeoutError`, and
            :class:`~llmgateway.providers.errors.ProviderUnavailableError`
            trigger retries.
        timeout_ms: Default per-request timeout.
        debug: Log every outbound body as ``llm_request_payload``.
        retry_wait: Tenacity wait strategy between attempts.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        debug: bool = False,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._max_retries = max(1, max_retries)
        self._timeout_ms = timeout_ms
        self._debug = debug
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=30)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def post(
        self,
        url: str,
        payload: Any,
        headers: dict[str, str],
        timeout_ms: int | None = None,
        provider: str | None = None,
        max_attempts: int | None = None,
    ) -> TransportResponse:
        """POST *payload* as JSON and return the decoded 2xx response.

        *max_attempts* overrides the configured retry budget for this call;
        ``1`` sends exactly once.

        Raises:
            RequestSetupError: The URL is invalid or uses an unsupported scheme,
                or the body cannot be encoded as strict JSON.
            TimeoutError: No response within the timeout.
            TransportError: Connection-level failure, no response received.
            UpstreamError: Non-success status (or one of its subclasses).
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, max_attempts or self._max_retries)),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            wait=self._retry_wait,
            before_sleep=_before_sleep,
            reraise=True,
        ):
            with attempt:
                return await self._post_once(url, payload, headers, timeout_ms or self._timeout_ms, provider)

    async def _post_once(
        self,
        url: str,
        payload: Any,
        headers: dict[str, str],
        timeout_ms: int,
        provider: str | None,
    ) -> TransportResponse:
        with _tracer.start_as_current_span("llm.api_call") as span:
            span.set_attribute("gen_ai.system", provider or "unknown")
            span.set_attribute("url.full", url)
            span.set_attribute("llm.timeout_ms", timeout_ms)

            if self._debug:
                _log.info("llm_request_payload", provider=provider, url=url, payload=payload)

            try:
                response = await self._get_client().post(
                    url, json=payload, headers=headers, timeout=timeout_ms / 1000
                )
            except httpx.TimeoutException as exc:
                raise self._record(
                    span,
                    TimeoutError(
                        f"Request to {provider} timed out after {timeout_ms}ms",
                        provider=provider,
                        original_error=exc,
                    ),
                ) from exc
            except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
                raise self._record(
                    span,
                    RequestSetupError(f"Invalid request URL {url!r}: {exc}", provider=provider, original_error=exc),
                ) from exc
            except httpx.RequestError as exc:
                raise self._record(
                    span,
                    TransportError(f"No response from {url}: {exc}", provider=provider, original_error=exc),
                ) from exc
            except (TypeError, ValueError) as exc:
                # httpx encodes json= with allow_nan=False
                raise self._record(
                    span,
                    RequestSetupError(
                        f"Request body is not valid JSON: {exc}", provider=provider, original_error=exc
                    ),
                ) from exc

            span.set_attribute("http.response.status_code", response.status_code)
            body = _decode_body(response)
            response_headers = dict(response.headers)

            if not response.is_success:
                carried_tools = isinstance(payload, dict) and bool(payload.get("tools"))
                raise self._record(
                    span,
                    upstream_error(
                        response.status_code,
                        body,
                        response_headers,
                        response.reason_phrase,
                        provider,
                        carried_tools,
                    ),
                )

            return TransportResponse(
                status_code=response.status_code,
                body=body,
                headers=response_headers,
                url=url,
            )

    @staticmethod
    def _record(span: Any, exc: ProviderError) -> ProviderError:
        span.record_exception(exc)
        span.set_status(StatusCode.ERROR, exc.message)
        return exc
