"""Alternate OpenAI endpoints for models that reject ``/chat/completions``.

Reasoning and legacy completion models answer the chat endpoint with errors
such as "This is not a chat model".  The gateway then retries the same
request against ``/responses`` and ``/completions`` using the body shapes
built here.
"""

from typing import Any, Final

from llmgateway.providers.profiles import DEFAULT_LIMITS

CHAT_PATH: Final[str] = "/chat/completions"
RESPONSES_PATH: Final[str] = "/responses"
COMPLETIONS_PATH: Final[str] = "/completions"

FALLBACK_PATHS: Final[frozenset[str]] = frozenset({RESPONSES_PATH, COMPLETIONS_PATH})

# Unsupported-parameter strips attempted per endpoint.
MAX_PARAM_STRIPS: Final[int] = 3

DEFAULT_TIMEOUT_MS: Final[int] = 30000
DEFAULT_FALLBACK_TIMEOUT_MS: Final[int] = 60000


def normalize_path(path: str | None) -> str:
    text = str(path or "").strip()
    if text and not text.startswith("/"):
        text = f"/{text}"
    return text.rstrip("/") if text != "/" else text


def is_fallback_endpoint(path: str | None) -> bool:
    return normalize_path(path) in FALLBACK_PATHS


def timeout_for_path(
    path: str | None,
    default_ms: int = DEFAULT_TIMEOUT_MS,
    fallback_ms: int | None = DEFAULT_FALLBACK_TIMEOUT_MS,
) -> int:
    """Request timeout in ms: fallback endpoints get the longer budget.

    A missing, zero or negative *fallback_ms* reverts to 60000.
    """
    if is_fallback_endpoint(path):
        return fallback_ms if fallback_ms and fallback_ms > 0 else DEFAULT_FALLBACK_TIMEOUT_MS
    return default_ms


def fallback_paths_for(message: str | None) -> tuple[str, ...]:
    """Endpoints worth trying after the chat endpoint failed with *message*."""
    lowered = (message or "").lower()
    if "not a chat model" in lowered:
        return (RESPONSES_PATH, COMPLETIONS_PATH)
    if "v1/responses" in lowered or "responses endpoint" in lowered:
        return (RESPONSES_PATH,)
    if "v1/completions" in lowered:
        return (COMPLETIONS_PATH,)
    return ()


def build_prompt(messages: Any) -> str:
    """Render chat messages as ``ROLE: content`` lines for ``/completions``.

    Entries without a string role or with blank content are skipped.
    """
    if not isinstance(messages, list):
        return ""
    lines = []
    for message in messages:
        if not isinstance(message, dict):
            continue
        role, content = message.get("role"), message.get("content")
        if isinstance(role, str) and isinstance(content, str) and content.strip():
            lines.append(f"{role.upper()}: {content.strip()}")
    return "\n".join(lines)


def _sampling(payload: dict[str, Any]) -> tuple[Any, Any, Any]:
    max_tokens = payload.get("max_tokens") or DEFAULT_LIMITS.max_tokens
    temperature = payload.get("temperature")
    top_p = payload.get("top_p")
    return (
        max_tokens,
        DEFAULT_LIMITS.temperature if temperature is None else temperature,
        DEFAULT_LIMITS.top_p if top_p is None else top_p,
    )


def build_responses_payload(payload: dict[str, Any], model: str) -> dict[str, Any]:
    max_tokens, temperature, top_p = _sampling(payload)
    messages = payload.get("messages")
    return {
        "model": model,
        "input": [dict(m) for m in messages if isinstance(m, dict)] if isinstance(messages, list) else [],
        "max_output_tokens": max_tokens,
        "temperature": temperature,
        "top_p": top_p,
    }


def build_completions_payload(payload: dict[str, Any], model: str) -> dict[str, Any]:
    max_tokens, temperature, top_p = _sampling(payload)
    return {
        "model": model,
        "prompt": build_prompt(payload.get("messages")),
        "max_tokens": max_tokens,
        "temperature": temperature,
        "top_p": top_p,
    }


def build_fallback_payload(path: str, payload: dict[str, Any], model: str) -> dict[str, Any]:
    if normalize_path(path) == RESPONSES_PATH:
        return build_responses_payload(payload, model)
    return build_completions_payload(payload, model)
