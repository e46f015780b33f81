"""Request and response dataclasses for the LLM Gateway provider layer.

These types form the public contract between gateway business logic and the
provider-specific formatting / transport layers.  Request types are immutable
(``frozen=True``) and validated at construction time so callers get a fast,
explicit error rather than a cryptic downstream failure.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from llmgateway.providers.errors import ConfigurationError, InvalidRequestError

_VALID_ROLES: frozenset[str] = frozenset({"system", "user", "assistant", "tool", "function"})

# Inbound option names that are accepted as aliases for SamplingOptions fields.
_SAMPLING_ALIASES: dict[str, tuple[str, ...]] = {
    "max_tokens": ("max_tokens", "maxTokens"),
    "temperature": ("temperature",),
    "top_p": ("top_p", "topP", "p"),
}


class ToolBridgeMode(str, Enum):
    """Strength of the synthetic ``respond_with_text`` tool contract."""

    NONE = "none"
    MINIMAL = "minimal"
    FULL = "full"


@dataclass(frozen=True)
class SamplingOptions:
    """Sampling limits; ``None`` means "use the provider default"."""

    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None

    @classmethod
    def from_mapping(cls, options: "Mapping[str, Any] | SamplingOptions | None") -> "SamplingOptions":
        """Build from a mapping accepting both snake_case and camelCase keys."""
        if options is None:
            return cls()
        if isinstance(options, SamplingOptions):
            return options
        values: dict[str, Any] = {}
        for name, aliases in _SAMPLING_ALIASES.items():
            for alias in aliases:
                if options.get(alias) is not None:
                    values[name] = options[alias]
                    break
        return cls(**values)

    def with_defaults(self, defaults: "SamplingOptions") -> "SamplingOptions":
        """Fill every unset field from *defaults*.  Zero is a real value."""
        return SamplingOptions(
            max_tokens=self.max_tokens if self.max_tokens is not None else defaults.max_tokens,
            temperature=self.temperature if self.temperature is not None else defaults.temperature,
            top_p=self.top_p if self.top_p is not None else defaults.top_p,
        )


@dataclass(frozen=True)
class ControlFlags:
    """Caller intents that steer the gateway but never cross the transport boundary.

    Attributes:
        disable_dedup: Skip the in-flight coalescing and result cache.
        disable_tool_bridge: Do not apply the default tool bridge.  Retry
            recovery may still force it on.
        disable_fallback_retries: Re-raise the first failure without any
            bridge-based recovery attempt.
        request_type: Label used for metrics and audit records.
        phase: Free-form label identifying the calling subsystem.
    """

    disable_dedup: bool = False
    disable_tool_bridge: bool = False
    disable_fallback_retries: bool = False
    request_type: str = "generate"
    phase: str = "unknown"


@dataclass(frozen=True)
class GenerateOptions:
    """Inbound options recognised by :meth:`LLMGateway.generate`."""

    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    disable_tool_bridge: bool = False
    disable_dedup: bool = False
    disable_fallback_retries: bool = False
    request_type: str = "generate"
    phase: str = "unknown"

    @classmethod
    def from_mapping(cls, options: "Mapping[str, Any] | GenerateOptions | None") -> "GenerateOptions":
        """Accept an options dict (camelCase sampling aliases allowed)."""
        if options is None:
            return cls()
        if isinstance(options, GenerateOptions):
            return options
        sampling = SamplingOptions.from_mapping(options)
        flags = {
            name: bool(options[name])
            for name in ("disable_tool_bridge", "disable_dedup", "disable_fallback_retries")
            if options.get(name) is not None
        }
        labels = {name: str(options[name]) for name in ("request_type", "phase") if options.get(name)}
        return cls(
            max_tokens=sampling.max_tokens,
            temperature=sampling.temperature,
            top_p=sampling.top_p,
            **flags,
            **labels,
        )

    @property
    def sampling(self) -> SamplingOptions:
        return SamplingOptions(self.max_tokens, self.temperature, self.top_p)

    @property
    def control_flags(self) -> ControlFlags:
        return ControlFlags(
            disable_dedup=self.disable_dedup,
            disable_tool_bridge=self.disable_tool_bridge,
            disable_fallback_retries=self.disable_fallback_retries,
            request_type=self.request_type,
            phase=self.phase,
        )


@dataclass(frozen=True)
class LLMConfig:
    """A resolved provider configuration with a plaintext key.

    Either the gateway's own persisted configuration (decrypted from the
    credential store) or an ad hoc override supplied for a one-off probe.
    """

    provider: str
    model: str
    api_url: str
    api_key: str | None = field(default=None, repr=False)
    endpoint_path: str | None = None
    requires_api_key: bool = True

    def validate(self) -> None:
        """Reject incomplete configurations before any network call."""
        missing = [
            name
            for name in ("provider", "model", "api_url")
            if not isinstance(getattr(self, name), str) or not getattr(self, name).strip()
        ]
        if missing:
            raise ConfigurationError(
                f"Invalid configuration: missing required fields ({', '.join(missing)})",
                provider=self.provider or None,
            )


@dataclass(frozen=True)
class RequestEnvelope:
    """The normalized shape of one gateway call.

    Args:
        provider: Provider identifier, e.g. ``"openai"`` or ``"ollama"``.
        model: Upstream model name.
        api_url: Provider base URL.
        api_key: Plaintext key, or ``None`` for key-less providers.
        messages: Conversation history.  Each dict must contain ``"role"`` and
            ``"content"`` keys.  Role must be one of: system, user, assistant,
            tool, function.
        sampling: Caller-supplied sampling options.
        tool_bridge_mode: Bridge strength for the first attempt.
        control_flags: Caller intents; never sent upstream.
        endpoint_path: Optional stored endpoint path tried before the
            provider's default path.

    Raises:
        ConfigurationError: If provider, model or api_url is blank.
        InvalidRequestError: If messages or sampling options fail validation.
    """

    provider: str
    model: str
    api_url: str
    messages: list[dict[str, Any]]
    api_key: str | None = field(default=None, repr=False)
    sampling: SamplingOptions = field(default_factory=SamplingOptions)
    tool_bridge_mode: ToolBridgeMode = ToolBridgeMode.NONE
    control_flags: ControlFlags = field(default_factory=ControlFlags)
    endpoint_path: str | None = None

    def __post_init__(self) -> None:
        LLMConfig(self.provider, self.model, self.api_url).validate()

        if not self.messages:
            raise InvalidRequestError("messages must not be empty", provider=self.provider)

        for i, msg in enumerate(self.messages):
            if not isinstance(msg, Mapping) or "role" not in msg or "content" not in msg:
                raise InvalidRequestError(
                    f"messages[{i}] must contain both 'role' and 'content' keys",
                    provider=self.provider,
                )
            if msg["role"] not in _VALID_ROLES:
                raise InvalidRequestError(
                    f"messages[{i}] has invalid role '{msg['role']}'; "
                    f"must be one of {sorted(_VALID_ROLES)}",
                    provider=self.provider,
                )

        temperature = self.sampling.temperature
        if temperature is not None and not 0.0 <= temperature <= 2.0:
            raise InvalidRequestError(
                f"temperature must be in [0.0, 2.0], got {temperature}", provider=self.provider
            )

        top_p = self.sampling.top_p
        if top_p is not None and not 0.0 <= top_p <= 1.0:
            raise InvalidRequestError(f"top_p must be in [0.0, 1.0], got {top_p}", provider=self.provider)

        max_tokens = self.sampling.max_tokens
        if max_tokens is not None and max_tokens <= 0:
            raise InvalidRequestError(
                f"max_tokens must be a positive integer, got {max_tokens}", provider=self.provider
            )

    @classmethod
    def from_config(
        cls,
        config: LLMConfig,
        messages: list[dict[str, Any]],
        options: GenerateOptions,
        tool_bridge_mode: ToolBridgeMode = ToolBridgeMode.NONE,
    ) -> "RequestEnvelope":
        return cls(
            provider=config.provider,
            model=config.model,
            api_url=config.api_url,
            api_key=config.api_key,
            messages=list(messages),
            sampling=options.sampling,
            tool_bridge_mode=tool_bridge_mode,
            control_flags=options.control_flags,
            endpoint_path=config.endpoint_path,
        )

    def base_payload(self) -> dict[str, Any]:
        """Generic (pre-format) payload: messages plus the sampling values set."""
        payload: dict[str, Any] = {"messages": [dict(m) for m in self.messages]}
        if self.sampling.max_tokens is not None:
            payload["max_tokens"] = self.sampling.max_tokens
        if self.sampling.temperature is not None:
            payload["temperature"] = self.sampling.temperature
        if self.sampling.top_p is not None:
            payload["top_p"] = self.sampling.top_p
        return payload


@dataclass(frozen=True)
class TransportResponse:
    """A successful upstream HTTP response.

    Attributes:
        status_code: HTTP status (2xx).
        body: Decoded JSON body, or raw text when the body is not JSON.
        headers: Response headers.
        url: The URL the request was sent to.
    """

    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""
