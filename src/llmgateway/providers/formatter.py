"""Provider-specific request body formatting.

Turns a generic ``(prompt-or-messages, sampling options)`` pair into the body a
provider expects, using the field names and nesting recorded on its
:class:`~llmgateway.providers.profiles.ProviderProfile`.
"""

from collections.abc import Mapping
from typing import Any

from llmgateway.providers.models import SamplingOptions
from llmgateway.providers.profiles import MessageStyle, ProviderProfile, get_profile

# Keys of the generic payload that the formatter places itself.
_CONSUMED_KEYS = frozenset({"model", "messages", "max_tokens", "temperature", "top_p"})


def format_payload(
    provider: str,
    model: str,
    prompt_or_messages: str | list[dict[str, Any]],
    options: Mapping[str, Any] | SamplingOptions | None = None,
) -> dict[str, Any]:
    """Build the wire body for *provider*.

    Example::

        format_payload("cohere", "command-r-plus", "Hello world",
                       {"maxTokens": 100, "temperature": 0.7, "topP": 0.9})
        # {"model": "command-r-plus", "message": "Hello world",
        #  "max_tokens": 100, "temperature": 0.7, "p": 0.9}

    Raises:
        UnsupportedProviderError: If *provider* has no registered profile.
    """
    if isinstance(prompt_or_messages, str):
        messages = [{"role": "user", "content": prompt_or_messages}]
    else:
        messages = list(prompt_or_messages)

    sampling = SamplingOptions.from_mapping(options)
    payload: dict[str, Any] = {"messages": messages}
    if sampling.max_tokens is not None:
        payload["max_tokens"] = sampling.max_tokens
    if sampling.temperature is not None:
        payload["temperature"] = sampling.temperature
    if sampling.top_p is not None:
        payload["top_p"] = sampling.top_p
    return format_request(provider, model, payload)


def format_prompt(
    provider: str,
    model: str,
    prompt: str,
    options: Mapping[str, Any] | SamplingOptions | None = None,
) -> dict[str, Any]:
    """Single-prompt convenience wrapper around :func:`format_payload`."""
    return format_payload(provider, model, prompt, options)


def format_request(provider: str, model: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Format a generic payload (``messages`` plus sampling and extra keys).

    Extra keys (tool schemas, ``response_format``, internal markers) survive
    only for chat-style providers; other shapes are rebuilt from scratch.
    """
    profile = get_profile(provider)
    messages = list(payload.get("messages") or [])
    sampling = SamplingOptions(
        max_tokens=payload.get("max_tokens"),
        temperature=payload.get("temperature"),
        top_p=payload.get("top_p"),
    ).with_defaults(profile.default_limits)

    body = _shape_messages(profile, model, messages, payload)
    _place_sampling(profile, body, sampling)
    return body


def _shape_messages(
    profile: ProviderProfile,
    model: str,
    messages: list[dict[str, Any]],
    payload: Mapping[str, Any],
) -> dict[str, Any]:
    style = profile.message_style

    if style is MessageStyle.GOOGLE:
        return {"contents": [{"parts": [{"text": msg.get("content")}]} for msg in messages]}

    if style is MessageStyle.COHERE:
        last = messages[-1] if messages else {}
        return {"model": model, "message": last.get("content")}

    if style is MessageStyle.OLLAMA:
        return {"model": model, "messages": messages, "stream": False}

    if style is MessageStyle.ANTHROPIC:
        system = [str(m.get("content", "")) for m in messages if m.get("role") == "system"]
        body: dict[str, Any] = {
            "model": model,
            "messages": [m for m in messages if m.get("role") != "system"],
        }
        if system:
            body["system"] = "\n\n".join(system)
        return body

    extras = {key: value for key, value in payload.items() if key not in _CONSUMED_KEYS}
    return {"model": model, **extras, "messages": messages}


def _place_sampling(profile: ProviderProfile, body: dict[str, Any], sampling: SamplingOptions) -> None:
    fields = profile.field_map
    target = body
    if fields.container is not None:
        target = body.setdefault(fields.container, {})

    target[fields.max_tokens] = sampling.max_tokens
    target[fields.temperature] = sampling.temperature
    if fields.top_p is not None:
        target[fields.top_p] = sampling.top_p
