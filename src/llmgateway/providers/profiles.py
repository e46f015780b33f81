"""Provider profile registry.

One immutable :class:`ProviderProfile` per supported provider identifier holds
the static facts the rest of the gateway needs: endpoint path, header rules,
where sampling limits live in the request body and how messages are shaped.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Final

from llmgateway.providers.errors import UnsupportedProviderError
from llmgateway.providers.models import SamplingOptions

DEFAULT_LIMITS: Final[SamplingOptions] = SamplingOptions(max_tokens=1000, temperature=0.7, top_p=0.9)

# Base profile used for endpoint/header resolution of unrecognised providers.
FALLBACK_PROFILE_ID: Final[str] = "openai"


class AuthStyle(str, Enum):
    BEARER = "bearer"
    NONE = "none"


class MessageStyle(str, Enum):
    """How the conversation is laid out in the request body."""

    CHAT = "chat"  # {"messages": [...]} passed through with extra keys
    ANTHROPIC = "anthropic"  # {"messages": [...], "system": "..."}
    GOOGLE = "google"  # {"contents": [{"parts": [{"text": ...}]}]}
    COHERE = "cohere"  # {"message": <last message content>}
    OLLAMA = "ollama"  # {"messages": [...], "stream": false}


@dataclass(frozen=True)
class FieldMap:
    """Names of the sampling fields and the object they are nested in.

    ``container`` of ``None`` means the fields sit at the top level of the
    body; ``top_p`` of ``None`` means the provider shape has no nucleus field.
    """

    max_tokens: str = "max_tokens"
    temperature: str = "temperature"
    top_p: str | None = "top_p"
    container: str | None = None


@dataclass(frozen=True)
class ProviderProfile:
    id: str
    endpoint_template: str
    auth_style: AuthStyle = AuthStyle.BEARER
    extra_headers: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    field_map: FieldMap = FieldMap()
    message_style: MessageStyle = MessageStyle.CHAT
    default_limits: SamplingOptions = DEFAULT_LIMITS
    tool_bridge_default: bool = False
    requires_api_key: bool = True


def _openai_compatible(provider_id: str, *, tool_bridge: bool, local: bool = False) -> ProviderProfile:
    return ProviderProfile(
        id=provider_id,
        endpoint_template="/chat/completions",
        auth_style=AuthStyle.NONE if local else AuthStyle.BEARER,
        tool_bridge_default=tool_bridge,
        requires_api_key=not local,
    )


_PROFILES: Final[dict[str, ProviderProfile]] = {
    "openai": _openai_compatible("openai", tool_bridge=True),
    "groq": _openai_compatible("groq", tool_bridge=True),
    "together": _openai_compatible("together", tool_bridge=True),
    "perplexity": _openai_compatible("perplexity", tool_bridge=True),
    "mistral": _openai_compatible("mistral", tool_bridge=True),
    "custom": _openai_compatible("custom", tool_bridge=True),
    "lmstudio": _openai_compatible("lmstudio", tool_bridge=False, local=True),
    "textgen": _openai_compatible("textgen", tool_bridge=False, local=True),
    "anthropic": ProviderProfile(
        id="anthropic",
        endpoint_template="/messages",
        extra_headers=MappingProxyType({"anthropic-version": "2023-06-01"}),
        message_style=MessageStyle.ANTHROPIC,
    ),
    "google": ProviderProfile(
        id="google",
        endpoint_template="/models/{model}:generateContent",
        field_map=FieldMap(
            max_tokens="maxOutputTokens",
            temperature="temperature",
            top_p="topP",
            container="generationConfig",
        ),
        message_style=MessageStyle.GOOGLE,
    ),
    "cohere": ProviderProfile(
        id="cohere",
        endpoint_template="/chat",
        field_map=FieldMap(top_p="p"),
        message_style=MessageStyle.COHERE,
    ),
    "ollama": ProviderProfile(
        id="ollama",
        endpoint_template="/api/chat",
        auth_style=AuthStyle.NONE,
        field_map=FieldMap(max_tokens="num_predict", top_p=None, container="options"),
        message_style=MessageStyle.OLLAMA,
        requires_api_key=False,
    ),
}

SUPPORTED_PROVIDERS: Final[tuple[str, ...]] = tuple(_PROFILES)


def normalize_provider(provider: str | None) -> str:
    return str(provider or "").strip().lower()


def get_profile(provider: str | None) -> ProviderProfile:
    """Return the profile for *provider* (case-insensitive).

    Raises:
        UnsupportedProviderError: If no profile is registered under that id.
    """
    profile = _PROFILES.get(normalize_provider(provider))
    if profile is None:
        raise UnsupportedProviderError(provider)
    return profile


def resolve_profile(provider: str | None) -> ProviderProfile:
    """Like :func:`get_profile` but falls back to the OpenAI-compatible shape."""
    return _PROFILES.get(normalize_provider(provider), _PROFILES[FALLBACK_PROFILE_ID])


def is_supported(provider: str | None) -> bool:
    return normalize_provider(provider) in _PROFILES


def requires_api_key(provider: str | None) -> bool:
    """Local runtimes (ollama, lmstudio, textgen) work without a key."""
    return resolve_profile(provider).requires_api_key


def endpoint_path(provider: str | None, model: str) -> str:
    return resolve_profile(provider).endpoint_template.format(model=model)


def build_endpoint_url(provider: str | None, api_url: str, model: str, path: str | None = None) -> str:
    """Join the trimmed base URL with *path* or the provider's default path."""
    base = str(api_url or "").rstrip("/")
    suffix = path if path is not None else endpoint_path(provider, model)
    if not suffix.startswith("/"):
        suffix = f"/{suffix}"
    return f"{base}{suffix}"


def build_headers(provider: str | None, api_key: str | None) -> dict[str, str]:
    """Request headers for *provider*.

    ``Authorization`` is omitted for key-less local providers and whenever no
    key is configured.  A key that already carries the bearer scheme is used
    as is.
    """
    profile = resolve_profile(provider)
    headers: dict[str, str] = {"Content-Type": "application/json"}

    if profile.auth_style is AuthStyle.BEARER and api_key and api_key.strip():
        key = api_key.strip()
        headers["Authorization"] = key if key.lower().startswith("bearer ") else f"Bearer {key}"

    headers.update(profile.extra_headers)
    return headers
