"""Outbound payload sanitization.

Strips gateway-internal control fields and structures that strict providers
reject before a body is put on the wire.  Nothing here mutates its input.
"""

import re
from typing import Any

from llmgateway.providers.serialization import INTERNAL_FLAG_PREFIX
from llmgateway.providers.tool_bridge import TOOL_BRIDGE_FLAG

_TOOL_FIELDS = ("tools", "tool_choice", "functions", "function_call", "parallel_tool_calls")

# (payload key, pattern naming it in an "unsupported parameter" message)
_UNSUPPORTED_PARAMS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("temperature", re.compile(r"temperature", re.IGNORECASE)),
    ("top_p", re.compile(r"top_?p", re.IGNORECASE)),
    ("max_output_tokens", re.compile(r"max_output_tokens", re.IGNORECASE)),
    ("max_tokens", re.compile(r"max_tokens", re.IGNORECASE)),
)


def sanitize_payload(provider: str | None, payload: Any) -> Any:
    """Return a copy of *payload* that is safe to send to *provider*.

    Non-dict values pass through unchanged.  Tool-calling fields are removed
    unless the body was produced by the tool bridge, in which case they
    are all left alone.  Every key carrying the internal prefix
    (the bridge marker included) is dropped, as is an empty
    ``response_format``.  Messages lose ``tool_calls`` and blank ``name``
    fields.
    """
    if not isinstance(payload, dict):
        return payload

    allow_bridge = bool(payload.get(TOOL_BRIDGE_FLAG))

    sanitized = {
        key: value for key, value in payload.items() if not str(key).startswith(INTERNAL_FLAG_PREFIX)
    }

    if not allow_bridge:
        for key in _TOOL_FIELDS:
            sanitized.pop(key, None)

    response_format = sanitized.get("response_format")
    if isinstance(response_format, dict) and not response_format:
        del sanitized["response_format"]

    messages = sanitized.get("messages")
    if isinstance(messages, list):
        sanitized["messages"] = [_sanitize_message(msg) for msg in messages if isinstance(msg, dict)]

    return sanitized


def _sanitize_message(message: dict[str, Any]) -> dict[str, Any]:
    cleaned = {key: value for key, value in message.items() if key != "tool_calls"}
    name = cleaned.get("name")
    if "name" in cleaned and not (isinstance(name, str) and name.strip()):
        del cleaned["name"]
    return cleaned


def strip_unsupported_params(payload: Any, error_message: str | None) -> Any:
    """Drop the sampling fields an "Unsupported parameter" error names.

    Returns *payload* itself (same object) when the message is not about an
    unsupported parameter or names none of the fields present, so callers can
    detect "nothing to strip" with an identity check.
    """
    if not isinstance(payload, dict) or not error_message:
        return payload
    if "unsupported parameter" not in error_message.lower():
        return payload

    named = [key for key, pattern in _UNSUPPORTED_PARAMS if pattern.search(error_message)]
    present = [key for key in named if key in payload]
    if not present:
        return payload
    return {key: value for key, value in payload.items() if key not in present}
