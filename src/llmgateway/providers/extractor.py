"""Normalize provider response bodies to text or a JSON action envelope.

Each provider has an ordered list of extractor functions.  An extractor
returns ``None`` for "no match" and never raises; the first non-empty result
wins.  When neither the provider's own extractors nor the generic fallback
chain produce anything, the whole body is serialized and returned.
"""

import json
from collections.abc import Callable, Sequence
from typing import Any

from llmgateway.providers.errors import SerializationError
from llmgateway.providers.profiles import normalize_provider
from llmgateway.providers.serialization import to_json, to_json_or_str

Extractor = Callable[[Any], "str | None"]

_TEXT_TOOLS = frozenset({"respond_with_text", "response"})
_JSON_TOOLS = frozenset({"json", "respond_with_json"})

# Field paths tried, in order, when turning an error into a message.
_ERROR_MESSAGE_PATHS: tuple[tuple[str, ...], ...] = (
    ("error", "message"),
    ("error",),
    ("message",),
    ("detail",),
)


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


def _dig(value: Any, *path: str | int) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(value, list) or len(value) <= key:
                return None
            value = value[key]
        else:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
    return value


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _non_blank(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first_truthy(args: Any, *keys: str) -> Any:
    if not isinstance(args, dict):
        return None
    for key in keys:
        if args.get(key):
            return args[key]
    return None


def _first_string(args: Any, *keys: str) -> str:
    if not isinstance(args, dict):
        return ""
    for key in keys:
        text = _as_str(args.get(key))
        if text:
            return text
    return ""


def _join_text_parts(parts: Any, *keys: str) -> str | None:
    """Join the usable text of an array of strings / ``{"text": ...}`` blocks."""
    if not isinstance(parts, list):
        return None
    texts = []
    for part in parts:
        if isinstance(part, str):
            texts.append(part)
            continue
        for key in keys or ("text",):
            text = _as_str(_dig(part, key))
            if text:
                texts.append(text)
                break
    return _non_blank("\n".join(t for t in texts if t))


def message_text(message: Any) -> str | None:
    """Text carried by a chat message: content, content blocks, then reasoning."""
    if isinstance(message, str):
        return message or None
    if not isinstance(message, dict):
        return None

    content = message.get("content")
    text = _non_blank(content) or _join_text_parts(content)
    if text:
        return text

    reasoning = message.get("reasoning")
    if isinstance(reasoning, str):
        return _non_blank(reasoning)
    return _non_blank(_dig(reasoning, "output_text")) or _join_text_parts(_dig(reasoning, "steps"))


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


def _first_tool_call(choice: dict[str, Any]) -> dict[str, Any] | None:
    message = choice.get("message")
    calls = _dig(message, "tool_calls")
    if isinstance(calls, list) and calls and isinstance(calls[0], dict):
        return calls[0]

    # legacy OpenAI function_call
    function_call = _dig(message, "function_call")
    if isinstance(function_call, dict):
        return {"function": function_call}

    calls = choice.get("tool_calls")
    if isinstance(calls, list) and calls and isinstance(calls[0], dict):
        return calls[0]
    return None


def _parse_arguments(raw: Any, message_fallback: str | None) -> Any:
    """Decode tool-call arguments.

    Message content, when present, beats garbled or non-string arguments.
    """
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None if message_fallback else {"text": raw}
    if isinstance(raw, dict) and raw:
        return None if message_fallback else raw
    return None


def _action_envelope(name: str, args: Any) -> dict[str, Any] | None:
    path = _as_str(_first_truthy(args, "path", "filePath", "filename"))
    reason = _as_str(_first_truthy(args, "reason"))

    if name == "read_file":
        envelope: dict[str, Any] = {"action": "read_file", "path": path}
    elif name in ("list_dir", "list_directory", "list_file"):
        envelope = {"action": "list_dir", "path": path}
    elif name == "write_file":
        envelope = {
            "action": "write_file",
            "path": path,
            "content": _as_str(_first_truthy(args, "content", "text")),
        }
    elif name == "list_goals":
        envelope = {"action": "list_goals"}
    elif name == "answer":
        return {"action": "answer", "answer": _as_str(_first_truthy(args, "answer", "text"))}
    elif name == "unable":
        return {
            "action": "unable",
            "explanation": _as_str(_first_truthy(args, "explanation", "reason", "message")),
        }
    else:
        return None

    if reason:
        envelope["reason"] = reason
    return envelope


def _json_tool_text(args: Any) -> str:
    text = _first_string(args, "text", "content", "answer")
    if text:
        return text

    payload = None
    if isinstance(args, dict):
        payload = next(
            (args[key] for key in ("json", "value", "data") if args.get(key) is not None), None
        )
    if payload is None:
        payload = args
    if isinstance(payload, str):
        return payload
    try:
        return to_json(payload)
    except SerializationError:
        return str(payload)


def _from_choices(body: Any) -> str | None:
    choice = _dig(body, "choices", 0)
    if not isinstance(choice, dict):
        return None

    fallback = message_text(choice.get("message"))
    call = _first_tool_call(choice)
    if call is not None:
        function = call.get("function") if isinstance(call.get("function"), dict) else {}
        raw_name = function.get("name", call.get("name"))
        raw_args = function.get("arguments", call.get("arguments"))
        name = raw_name.strip() if isinstance(raw_name, str) else ""
        args = _parse_arguments(raw_args, fallback)

        if args is not None:
            if not name:
                return to_json_or_str(body)
            if name in _JSON_TOOLS:
                return _json_tool_text(args)
            if name in _TEXT_TOOLS:
                text = _first_string(args, "text", "answer", "content", "message")
                if text:
                    return text
            else:
                envelope = _action_envelope(name, args)
                return to_json_or_str(envelope) if envelope is not None else to_json_or_str(body)

    return fallback or _non_blank(choice.get("text"))


# ---------------------------------------------------------------------------
# Provider-specific and generic extractors
# ---------------------------------------------------------------------------


def _anthropic_content(body: Any) -> str | None:
    blocks = _dig(body, "content")
    if isinstance(blocks, list):
        return _join_text_parts([b for b in blocks if not isinstance(b, dict) or b.get("type", "text") == "text"])
    return None


def _google_candidates(body: Any) -> str | None:
    return _join_text_parts(_dig(body, "candidates", 0, "content", "parts"))


def _cohere_text(body: Any) -> str | None:
    return _non_blank(_dig(body, "text"))


def _body_message(body: Any) -> str | None:
    return message_text(_dig(body, "message"))


def _choice_text(body: Any) -> str | None:
    return _non_blank(_dig(body, "choices", 0, "text"))


def _output_text(body: Any) -> str | None:
    return _non_blank(_dig(body, "output_text"))


def _output_items(body: Any) -> str | None:
    items = _dig(body, "output")
    if not isinstance(items, list):
        return None
    texts = [_join_text_parts(_dig(item, "content"), "text", "output_text") for item in items]
    return _non_blank("\n".join(t for t in texts if t))


_FALLBACK_CHAIN: tuple[Extractor, ...] = (
    _choice_text,
    _body_message,
    _output_text,
    _output_items,
)

_PROVIDER_EXTRACTORS: dict[str, tuple[Extractor, ...]] = {
    "anthropic": (_anthropic_content,),
    "google": (_google_candidates,),
    "cohere": (_cohere_text,),
    "ollama": (_body_message, _from_choices),
}

_DEFAULT_EXTRACTORS: tuple[Extractor, ...] = (_from_choices,)


def _run(extractors: Sequence[Extractor], body: Any) -> str | None:
    for extract in extractors:
        result = extract(body)
        if result:
            return result
    return None


def extract_response(provider: str | None, body: Any) -> str:
    """Return the text (or serialized action envelope) carried by *body*.

    Never raises; the worst case is the serialized body itself.
    """
    if isinstance(body, str):
        return body if body.strip() else to_json_or_str(body)

    extractors = _PROVIDER_EXTRACTORS.get(normalize_provider(provider), _DEFAULT_EXTRACTORS)
    return _run(extractors, body) or _run(_FALLBACK_CHAIN, body) or to_json_or_str(body)


# ---------------------------------------------------------------------------
# Error messages
# ---------------------------------------------------------------------------


def message_from_body(body: Any, paths: Sequence[tuple[str, ...]] = _ERROR_MESSAGE_PATHS) -> str | None:
    """First non-blank string found along *paths* in an error response body."""
    for path in paths:
        text = _non_blank(_dig(body, *path))
        if text:
            return text
    return None


def get_error_message(error: BaseException | str | None) -> str:
    """Most specific human-readable message for *error*.

    Order: response body fields (``error.message``, ``error``, ``message``,
    ``detail``), the exception message, the serialized body, and finally
    ``"Unknown error"``.
    """
    if isinstance(error, str):
        return error.strip() or "Unknown error"

    body = getattr(error, "body", None)
    text = message_from_body(body)
    if text:
        return text

    if error is not None:
        text = _non_blank(getattr(error, "message", None)) or _non_blank(str(error))
        if text:
            return text

    if body is not None:
        return to_json_or_str(body)
    return "Unknown error"
