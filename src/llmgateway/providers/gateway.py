"""LLM Gateway: the composition layer behind ``generate``.

One :class:`LLMGateway` owns the persisted provider configuration, a
:class:`~llmgateway.providers.dedup.RequestDeduplicator`, a
:class:`~llmgateway.providers.retry.RetryOrchestrator` and an
:class:`~llmgateway.providers.transport.HttpTransport`.  A call flows through
them in this order::

    envelope validation -> tool bridge -> dedup -> format -> sanitize
        -> transport -> (recovery retries) -> extract

OpenAI-compatible providers additionally fall back to ``/responses`` and
``/completions`` when the chat endpoint rejects the model.
"""

import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from llmgateway.providers import metrics
from llmgateway.providers.collaborators import (
    AuditRecord,
    AuditSink,
    CredentialStore,
    Decryptor,
    LoggingAuditSink,
    SettingsCredentialStore,
    passthrough_decryptor,
)
from llmgateway.providers.dedup import DedupConfig, RequestDeduplicator
from llmgateway.providers.endpoints import (
    DEFAULT_FALLBACK_TIMEOUT_MS,
    DEFAULT_TIMEOUT_MS,
    MAX_PARAM_STRIPS,
    build_fallback_payload,
    fallback_paths_for,
    is_fallback_endpoint,
    timeout_for_path,
)
from llmgateway.providers.errors import (
    ConfigurationError,
    LLMGatewayError,
    ProviderError,
    UpstreamError,
)
from llmgateway.providers.extractor import extract_response, get_error_message
from llmgateway.providers.formatter import format_request
from llmgateway.providers.models import (
    GenerateOptions,
    LLMConfig,
    RequestEnvelope,
    ToolBridgeMode,
    TransportResponse,
)
from llmgateway.providers.profiles import (
    MessageStyle,
    build_endpoint_url,
    build_headers,
    get_profile,
    is_supported,
    requires_api_key,
)
from llmgateway.providers.retry import RetryOrchestrator
from llmgateway.providers.sanitizer import sanitize_payload, strip_unsupported_params
from llmgateway.providers.tool_bridge import (
    apply_tool_bridge,
    should_use_action_tool_bridge_by_default,
)
from llmgateway.providers.transport import HttpTransport

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

# A stored path that fails with one of these is treated as missing upstream.
_PATH_UNSUPPORTED_STATUSES = frozenset({404, 405})


def _path_unsupported(exc: UpstreamError) -> bool:
    return exc.status_code in _PATH_UNSUPPORTED_STATUSES or bool(fallback_paths_for(get_error_message(exc)))


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GatewayStatus:
    """Whether the persisted configuration can serve requests.

    ``reason`` is ``None`` when ready.  Never carries the key itself.
    """

    configured: bool
    ready: bool
    reason: str | None = None
    provider: str | None = None
    model: str | None = None
    api_url: str | None = None
    requires_api_key: bool = True
    has_api_key: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "configured": self.configured,
            "ready": self.ready,
            "reason": self.reason,
            "provider": self.provider,
            "model": self.model,
            "api_url": self.api_url,
            "requires_api_key": self.requires_api_key,
            "has_api_key": self.has_api_key,
        }


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class LLMGateway:
    """Sends chat requests to the configured provider and returns plain text.

    Args:
        credential_store: Source of the persisted configuration.
        decryptor: Turns the stored key into plaintext; returns ``None`` on
            failure.
        audit_sink: Receives one record per call made with the persisted
            configuration.  ``None`` disables auditing.
        transport: HTTP seam.  A default :class:`HttpTransport` is created
            when omitted.
        deduplicator: Per-gateway coalescing and result cache.
        orchestrator: Tool-calling recovery state machine.
        timeout_ms: Timeout for default endpoints.
        fallback_timeout_ms: Timeout for ``/responses`` and ``/completions``.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        decryptor: Decryptor = passthrough_decryptor,
        audit_sink: AuditSink | None = None,
        transport: HttpTransport | None = None,
        deduplicator: RequestDeduplicator | None = None,
        orchestrator: RetryOrchestrator | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        fallback_timeout_ms: int | None = DEFAULT_FALLBACK_TIMEOUT_MS,
    ) -> None:
        self._store = credential_store
        self._decrypt = decryptor
        self.audit_sink = audit_sink
        self._transport = transport or HttpTransport(timeout_ms=timeout_ms)
        self.deduplicator = deduplicator or RequestDeduplicator()
        self._orchestrator = orchestrator or RetryOrchestrator()
        self._timeout_ms = timeout_ms
        self._fallback_timeout_ms = fallback_timeout_ms

        self.config: LLMConfig | None = None
        self.resolved_endpoint_path: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        credential_store: CredentialStore | None = None,
        decryptor: Decryptor = passthrough_decryptor,
        audit_sink: AuditSink | None = None,
    ) -> "LLMGateway":
        """Build a gateway wired from :class:`llmgateway.config.Settings`."""
        return cls(
            credential_store=credential_store or SettingsCredentialStore(settings),
            decryptor=decryptor,
            audit_sink=audit_sink or LoggingAuditSink(),
            transport=HttpTransport(
                max_retries=settings.llm_max_retries,
                timeout_ms=settings.llm_timeout_ms,
                debug=settings.llm_debug,
            ),
            deduplicator=RequestDeduplicator(DedupConfig.from_settings(settings)),
            timeout_ms=settings.llm_timeout_ms,
            fallback_timeout_ms=settings.llm_fallback_timeout_ms,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Load and decrypt the persisted configuration.

        Returns ``True`` when a configuration was found.  A stored key that
        fails to decrypt leaves ``api_key`` unset; :meth:`status` reports it.
        """
        active = await self._store.get_active_config()
        self.resolved_endpoint_path = None
        if active is None:
            self.config = None
            _log.info("llm_config_missing")
            return False

        api_key = self._decrypt(active.encrypted_key) if active.encrypted_key else None
        self.config = LLMConfig(
            provider=active.provider,
            model=active.model or "",
            api_url=active.api_url or "",
            api_key=api_key,
            endpoint_path=active.endpoint_path or None,
            requires_api_key=requires_api_key(active.provider),
        )
        _log.info(
            "llm_config_loaded",
            provider=self.config.provider,
            model=self.config.model,
            has_api_key=bool(api_key),
        )
        return True

    async def status(self) -> GatewayStatus:
        """Check the persisted configuration without sending anything upstream."""
        active = await self._store.get_active_config()
        if active is None:
            return GatewayStatus(configured=False, ready=False, reason="No LLM configuration found")

        needs_key = requires_api_key(active.provider)
        has_key = False
        reason: str | None = None
        if active.encrypted_key:
            has_key = bool(self._decrypt(active.encrypted_key))
        if needs_key and not active.encrypted_key:
            reason = "Missing API key"
        elif needs_key and not has_key:
            reason = "Failed to decrypt API key"
        elif _blank(active.api_url):
            reason = "Missing API URL"
        elif _blank(active.model):
            reason = "Missing model"

        return GatewayStatus(
            configured=True,
            ready=reason is None,
            reason=reason,
            provider=active.provider,
            model=active.model,
            api_url=active.api_url,
            requires_api_key=needs_key,
            has_api_key=has_key,
        )

    # ------------------------------------------------------------------
    # Public calls
    # ------------------------------------------------------------------

    async def generate(
        self,
        messages: list[dict[str, Any]],
        options: GenerateOptions | Mapping[str, Any] | None = None,
    ) -> str:
        """Send *messages* to the configured provider and return its text.

        The result is the assistant's text, or a JSON action envelope string
        when the model answered with a bridged action tool.

        Raises:
            ConfigurationError: No usable configuration is stored.
            InvalidRequestError: *messages* or sampling options are malformed.
            LLMGatewayError: Every attempt failed.  The message carries the
                most specific upstream message.
        """
        if self.config is None:
            await self.initialize()
        config = self.config
        if config is None:
            raise ConfigurationError(
                "No LLM configuration available. Please configure an LLM provider first."
            )

        opts = GenerateOptions.from_mapping(options)
        flags = opts.control_flags
        initial_mode = (
            ToolBridgeMode.FULL
            if should_use_action_tool_bridge_by_default(config.provider) and not flags.disable_tool_bridge
            else ToolBridgeMode.NONE
        )
        envelope = RequestEnvelope.from_config(config, messages, opts, initial_mode)
        context = metrics.MetricsContext(
            provider=config.provider,
            model=config.model,
            request_type=flags.request_type,
            phase=flags.phase,
        )
        metrics.record("requested", context)

        log = _log.bind(request_id=str(uuid.uuid4()), provider=config.provider, model=config.model)
        start = time.monotonic()

        with _tracer.start_as_current_span("llm.generate") as span:
            span.set_attribute("gen_ai.system", config.provider)
            span.set_attribute("gen_ai.request.model", config.model)
            span.set_attribute("llm.tool_bridge_mode", initial_mode.value)
            span.set_attribute("llm.request_type", flags.request_type)
            if envelope.sampling.temperature is not None:
                span.set_attribute("gen_ai.request.temperature", envelope.sampling.temperature)
            if envelope.sampling.max_tokens is not None:
                span.set_attribute("gen_ai.request.max_tokens", envelope.sampling.max_tokens)

            log.info(
                "llm_request_start",
                message_count=len(envelope.messages),
                tool_bridge_mode=initial_mode.value,
                phase=flags.phase,
            )

            try:
                response = await self._orchestrator.run(
                    lambda mode: self._send(config, envelope, mode, context),
                    initial_mode,
                    disabled=flags.disable_fallback_retries,
                )
            except ProviderError as exc:
                elapsed_ms = (time.monotonic() - start) * 1000
                message = get_error_message(exc)
                span.record_exception(exc)
                span.set_status(StatusCode.ERROR, message)
                log.error(
                    "llm_request_error",
                    error_type=type(exc).__name__,
                    error=message,
                    duration_ms=round(elapsed_ms, 2),
                )
                await self._audit(config, flags.request_type, False, elapsed_ms, message)
                raise LLMGatewayError(message, provider=config.provider, original_error=exc) from exc

            text = extract_response(config.provider, response.body)
            elapsed_ms = (time.monotonic() - start) * 1000
            log.info("llm_request_complete", duration_ms=round(elapsed_ms, 2), response_chars=len(text))
            await self._audit(config, flags.request_type, True, elapsed_ms)
            return text

    async def request(self, config: LLMConfig, payload: dict[str, Any]) -> TransportResponse:
        """Send one generic *payload* with *config* and return the raw response.

        No deduplication, tool bridge, recovery, endpoint fallback or
        transient retry is applied; used for connection probes.

        Raises:
            ConfigurationError: *config* is incomplete.
            UnsupportedProviderError: The provider has no profile.
            ProviderError: Any transport or upstream failure.
        """
        config.validate()
        return await self._post(config, payload, None, max_attempts=1)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _send(
        self,
        config: LLMConfig,
        envelope: RequestEnvelope,
        mode: ToolBridgeMode,
        context: metrics.MetricsContext,
    ) -> TransportResponse:
        payload = apply_tool_bridge(envelope.base_payload(), mode)
        return await self.deduplicator.dedupe(
            config.provider,
            config.model,
            payload,
            lambda: self._dispatch(config, payload, context),
            disabled=envelope.control_flags.disable_dedup,
            context=context,
        )

    async def _dispatch(
        self,
        config: LLMConfig,
        payload: dict[str, Any],
        context: metrics.MetricsContext,
    ) -> TransportResponse:
        metrics.record("outbound", context)

        stored_path = config.endpoint_path or self.resolved_endpoint_path
        if stored_path:
            try:
                return await self._post(config, payload, stored_path)
            except UpstreamError as exc:
                if not _path_unsupported(exc):
                    raise
                _log.warning(
                    "llm_stored_endpoint_failed",
                    provider=config.provider,
                    path=stored_path,
                    error=get_error_message(exc),
                )

        try:
            return await self._post(config, payload, None)
        except UpstreamError as exc:
            paths = fallback_paths_for(get_error_message(exc)) if self._supports_fallback(config) else ()
            if not paths:
                raise
            return await self._endpoint_fallback(config, payload, paths, exc)

    async def _post(
        self,
        config: LLMConfig,
        payload: dict[str, Any],
        path: str | None,
        max_attempts: int | None = None,
    ) -> TransportResponse:
        if path is not None and is_fallback_endpoint(path):
            return await self._post_fallback(config, payload, path)

        body = sanitize_payload(config.provider, format_request(config.provider, config.model, payload))
        return await self._transport.post(
            build_endpoint_url(config.provider, config.api_url, config.model, path),
            body,
            build_headers(config.provider, config.api_key),
            timeout_ms=timeout_for_path(path, self._timeout_ms, self._fallback_timeout_ms),
            provider=config.provider,
            max_attempts=max_attempts,
        )

    async def _post_fallback(
        self, config: LLMConfig, payload: dict[str, Any], path: str
    ) -> TransportResponse:
        body = build_fallback_payload(path, payload, config.model)
        url = build_endpoint_url(config.provider, config.api_url, config.model, path)
        headers = build_headers(config.provider, config.api_key)
        timeout_ms = timeout_for_path(path, self._timeout_ms, self._fallback_timeout_ms)

        strips = 0
        while True:
            try:
                return await self._transport.post(
                    url, body, headers, timeout_ms=timeout_ms, provider=config.provider
                )
            except UpstreamError as exc:
                stripped = strip_unsupported_params(body, get_error_message(exc))
                if stripped is body or strips >= MAX_PARAM_STRIPS:
                    raise
                strips += 1
                _log.info(
                    "llm_fallback_param_stripped",
                    provider=config.provider,
                    path=path,
                    removed=sorted(set(body) - set(stripped)),
                )
                body = stripped

    async def _endpoint_fallback(
        self,
        config: LLMConfig,
        payload: dict[str, Any],
        paths: tuple[str, ...],
        cause: ProviderError,
    ) -> TransportResponse:
        last_error: ProviderError = cause
        for path in paths:
            try:
                response = await self._post_fallback(config, payload, path)
            except ProviderError as exc:
                last_error = exc
                _log.warning(
                    "llm_endpoint_fallback_failed",
                    provider=config.provider,
                    path=path,
                    error=get_error_message(exc),
                )
                continue
            self.resolved_endpoint_path = path
            _log.info("llm_endpoint_resolved", provider=config.provider, path=path)
            return response

        raise ProviderError(
            f"Fallback failed: {get_error_message(last_error)}",
            provider=config.provider,
            original_error=last_error,
        ) from last_error

    @staticmethod
    def _supports_fallback(config: LLMConfig) -> bool:
        return is_supported(config.provider) and get_profile(config.provider).message_style is MessageStyle.CHAT

    async def _audit(
        self,
        config: LLMConfig,
        request_type: str,
        success: bool,
        elapsed_ms: float,
        error_message: str | None = None,
    ) -> None:
        if self.audit_sink is None:
            return
        await self.audit_sink.record(
            AuditRecord(
                provider=config.provider,
                model=config.model,
                request_type=request_type,
                success=success,
                error_message=error_message,
                response_time_ms=round(elapsed_ms, 2),
            )
        )
