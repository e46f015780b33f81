"""Custom exception hierarchy for LLM Gateway provider errors.

All gateway-level failures are mapped to one of these typed exceptions so
callers can handle them without inspecting raw ``httpx`` internals or provider
response bodies.

Hierarchy::

    ProviderError
    ├── UnsupportedProviderError      caller error, never retried
    ├── ConfigurationError            rejected before any network call
    ├── InvalidRequestError           malformed envelope / options
    ├── RequestSetupError             request could not be built or sent
    ├── SerializationError            internal, always recovered locally
    ├── TransportError                no response received
    │   └── TimeoutError
    ├── UpstreamError                 response received with non-success status
    │   ├── ToolSchemaError
    │   ├── RateLimitError
    │   ├── AuthError
    │   └── ProviderUnavailableError
    └── LLMGatewayError               surfaced after all recovery is exhausted
"""

from typing import Any


class ProviderError(Exception):
    """Base exception for all LLM provider errors.

    Attributes:
        message: Human-readable error description.
        provider: Provider name (e.g. "openai", "anthropic").  ``None`` when
            the provider could not be determined.
        original_error: The upstream exception that caused this error, if any.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


class UnsupportedProviderError(ProviderError):
    """Raised when a provider identifier matches none of the registered profiles."""

    def __init__(self, provider: str | None) -> None:
        super().__init__(f"Unsupported provider: {provider}", provider=provider)


class ConfigurationError(ProviderError):
    """Raised when the gateway configuration is missing or incomplete."""


class InvalidRequestError(ProviderError):
    """Raised for requests rejected as malformed before they are sent."""


class RequestSetupError(ProviderError):
    """Raised when a request cannot be constructed or dispatched at all."""


class SerializationError(ProviderError):
    """Raised when canonical serialization of a value fails.

    Never surfaced to callers; every call site recovers with a safe fallback
    representation.
    """


class TransportError(ProviderError):
    """Raised when a request was sent but no response arrived."""


class TimeoutError(TransportError):  # noqa: A001 – intentionally shadows the built-in
    """Raised when a provider request exceeds the configured timeout."""


class UpstreamError(ProviderError):
    """Raised when the provider answered with a non-success HTTP status.

    Attributes:
        status_code: HTTP status returned by the provider.
        body: Decoded response body (JSON value or raw text).
        headers: Response headers.
        reason: HTTP reason phrase, e.g. ``"Too Many Requests"``.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        body: Any = None,
        headers: dict[str, str] | None = None,
        reason: str = "",
        provider: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, provider=provider, original_error=original_error)
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.reason = reason


class ToolSchemaError(UpstreamError):
    """Upstream rejection whose message matches a tool-calling recovery rule."""


class RateLimitError(UpstreamError):
    """Raised when the provider returns HTTP 429 (rate limit exceeded).

    Attributes:
        retry_after: Seconds to wait before retrying, when the provider
            supplies a ``Retry-After`` header.  ``None`` if unavailable.
    """

    def __init__(self, message: str, status_code: int = 429, **kwargs: Any) -> None:
        super().__init__(message, status_code, **kwargs)
        raw = self.headers.get("retry-after") or self.headers.get("Retry-After")
        try:
            self.retry_after: float | None = float(raw) if raw is not None else None
        except ValueError:
            self.retry_after = None


class AuthError(UpstreamError):
    """Raised for authentication or authorisation failures (HTTP 401 / 403)."""


class ProviderUnavailableError(UpstreamError):
    """Raised when the provider is down (HTTP 5xx)."""


class LLMGatewayError(ProviderError):
    """The single error surfaced by :meth:`LLMGateway.generate`.

    The message is the most specific upstream message available, prefixed with
    ``"LLM API Error: "``.
    """

    PREFIX = "LLM API Error: "

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(f"{self.PREFIX}{message}", provider=provider, original_error=original_error)
        self.upstream_message = message
