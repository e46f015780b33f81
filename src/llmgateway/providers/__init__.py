"""Multi-provider LLM gateway.

Public surface area for the providers package.  Import from here rather than
from the individual submodules so internal structure can change freely.

Example::

    from llmgateway.providers import LLMGateway, LLMGatewayError
    from llmgateway.config import settings

    gateway = LLMGateway.from_settings(settings)
    text = await gateway.generate(
        [{"role": "user", "content": "Hello"}],
        {"temperature": 0, "max_tokens": 200},
    )
"""

from llmgateway.providers.collaborators import (
    ActiveConfig,
    AuditRecord,
    AuditSink,
    CredentialStore,
    LoggingAuditSink,
    SettingsCredentialStore,
)
from llmgateway.providers.connection import ConnectionTester, ConnectionTestResult
from llmgateway.providers.dedup import CacheEntry, DedupConfig, RequestDeduplicator
from llmgateway.providers.errors import (
    AuthError,
    ConfigurationError,
    InvalidRequestError,
    LLMGatewayError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    RequestSetupError,
    TimeoutError,
    ToolSchemaError,
    TransportError,
    UnsupportedProviderError,
    UpstreamError,
)
from llmgateway.providers.extractor import extract_response, get_error_message
from llmgateway.providers.formatter import format_payload, format_prompt, format_request
from llmgateway.providers.gateway import GatewayStatus, LLMGateway
from llmgateway.providers.models import (
    ControlFlags,
    GenerateOptions,
    LLMConfig,
    RequestEnvelope,
    SamplingOptions,
    ToolBridgeMode,
    TransportResponse,
)
from llmgateway.providers.profiles import (
    SUPPORTED_PROVIDERS,
    ProviderProfile,
    get_profile,
    requires_api_key,
)
from llmgateway.providers.retry import RECOVERY_POLICY, RecoveryRule, RetryOrchestrator
from llmgateway.providers.sanitizer import sanitize_payload, strip_unsupported_params
from llmgateway.providers.serialization import stable_stringify
from llmgateway.providers.tool_bridge import (
    apply_tool_bridge,
    should_use_action_tool_bridge_by_default,
)
from llmgateway.providers.transport import HttpTransport

__all__ = [
    # Gateway
    "LLMGateway",
    "GatewayStatus",
    "ConnectionTester",
    "ConnectionTestResult",
    "HttpTransport",
    # Models
    "ControlFlags",
    "GenerateOptions",
    "LLMConfig",
    "RequestEnvelope",
    "SamplingOptions",
    "ToolBridgeMode",
    "TransportResponse",
    # Collaborators
    "ActiveConfig",
    "AuditRecord",
    "AuditSink",
    "CredentialStore",
    "LoggingAuditSink",
    "SettingsCredentialStore",
    # Components
    "ProviderProfile",
    "SUPPORTED_PROVIDERS",
    "get_profile",
    "requires_api_key",
    "format_payload",
    "format_prompt",
    "format_request",
    "sanitize_payload",
    "strip_unsupported_params",
    "apply_tool_bridge",
    "should_use_action_tool_bridge_by_default",
    "extract_response",
    "get_error_message",
    "CacheEntry",
    "DedupConfig",
    "RequestDeduplicator",
    "stable_stringify",
    "RECOVERY_POLICY",
    "RecoveryRule",
    "RetryOrchestrator",
    # Errors
    "ProviderError",
    "UnsupportedProviderError",
    "ConfigurationError",
    "InvalidRequestError",
    "RequestSetupError",
    "TransportError",
    "TimeoutError",
    "UpstreamError",
    "ToolSchemaError",
    "RateLimitError",
    "AuthError",
    "ProviderUnavailableError",
    "LLMGatewayError",
]
