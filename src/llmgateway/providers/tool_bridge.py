"""Synthetic tool-calling contract for providers with unreliable free-text output.

Some OpenAI-compatible providers cannot emit well-formed text while function
calling is enabled, and some refuse a model's tool call unless a matching tool
was declared.  The bridge declares a single ``respond_with_text(text)`` tool
(``minimal``) or that tool plus the action tools callers understand
(``full``) so the model always has a predictable channel.

Bridged payloads carry :data:`TOOL_BRIDGE_FLAG`; the sanitizer keeps their
``tools``/``tool_choice`` and strips the flag itself.
"""

from collections.abc import Mapping
from typing import Any, Final

from llmgateway.providers.models import ToolBridgeMode
from llmgateway.providers.profiles import is_supported, normalize_provider, resolve_profile
from llmgateway.providers.serialization import INTERNAL_FLAG_PREFIX

__all__ = [
    "TOOL_BRIDGE_FLAG",
    "RESPOND_WITH_TEXT",
    "ToolBridgeMode",
    "apply_tool_bridge",
    "bridge_tools",
    "should_use_action_tool_bridge_by_default",
]

TOOL_BRIDGE_FLAG: Final[str] = f"{INTERNAL_FLAG_PREFIX}_tool_bridge"

RESPOND_WITH_TEXT: Final[str] = "respond_with_text"

_TEXT_SCHEMA: Final[dict[str, Any]] = {
    "type": "object",
    "properties": {
        "text": {"type": "string"},
        "answer": {"type": "string"},
        "content": {"type": "string"},
        "message": {"type": "string"},
    },
    "additionalProperties": True,
}


def _path_schema(*extra: str, required: tuple[str, ...] = ("path",)) -> dict[str, Any]:
    properties = {"path": {"type": "string"}, "reason": {"type": "string"}}
    properties.update({name: {"type": "string"} for name in extra})
    return {
        "type": "object",
        "properties": properties,
        "required": list(required),
        "additionalProperties": True,
    }


def _function(name: str, description: str, parameters: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


_RESPOND_WITH_TEXT_TOOL = _function(
    RESPOND_WITH_TEXT,
    "Return the final answer as plain text in the `text` argument.",
    {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
        "additionalProperties": True,
    },
)

_ACTION_TOOLS: Final[tuple[dict[str, Any], ...]] = (
    _function("read_file", "Request reading a project file by relative path.", _path_schema()),
    _function("list_dir", "Request listing a project directory by relative path.", _path_schema()),
    _function(
        "list_file",
        "Alias for list_dir. Some models emit list_file when they mean list a folder.",
        _path_schema(),
    ),
    _function(
        "write_file",
        "Request writing a project file by relative path.",
        _path_schema("content", required=("path", "content")),
    ),
    _function(
        "list_goals",
        "Request listing persisted goals for the current project.",
        {"type": "object", "properties": {"reason": {"type": "string"}}, "additionalProperties": True},
    ),
    _function(
        "answer",
        "Return the final answer as plain text.",
        {
            "type": "object",
            "properties": {"answer": {"type": "string"}},
            "required": ["answer"],
            "additionalProperties": True,
        },
    ),
    _function(
        "json",
        "Alias tool for returning a JSON response payload (as text or object).",
        {
            "type": "object",
            "properties": {
                "json": {},
                "value": {},
                "data": {},
                "text": {"type": "string"},
                "content": {"type": "string"},
                "answer": {"type": "string"},
            },
            "additionalProperties": True,
        },
    ),
    _function(
        "response",
        "Alias for respond_with_text/answer. Return the final response text.",
        _TEXT_SCHEMA,
    ),
    _function(
        "unable",
        "Return an explanation of why the request cannot be completed.",
        {
            "type": "object",
            "properties": {"explanation": {"type": "string"}},
            "required": ["explanation"],
            "additionalProperties": True,
        },
    ),
)

_PINNED_CHOICE: Final[dict[str, Any]] = {
    "type": "function",
    "function": {"name": RESPOND_WITH_TEXT},
}


def should_use_action_tool_bridge_by_default(provider: str | None) -> bool:
    """True only for providers that need the bridge for reliable text output.

    Only OpenAI-compatible chat providers get tool schemas by default; the
    Anthropic, Google, Cohere and Ollama shapes would reject the fields.
    """
    if not normalize_provider(provider) or not is_supported(provider):
        return False
    return resolve_profile(provider).tool_bridge_default


def bridge_tools(mode: ToolBridgeMode) -> list[dict[str, Any]]:
    """The tool declarations sent for *mode* (empty for ``none``)."""
    if mode is ToolBridgeMode.MINIMAL:
        return [_copy_tool(_RESPOND_WITH_TEXT_TOOL)]
    if mode is ToolBridgeMode.FULL:
        return [_copy_tool(_RESPOND_WITH_TEXT_TOOL), *(_copy_tool(tool) for tool in _ACTION_TOOLS)]
    return []


def apply_tool_bridge(payload: Mapping[str, Any] | None, mode: ToolBridgeMode) -> dict[str, Any]:
    """Return a new payload carrying the tool contract for *mode*.

    ``none`` yields a plain request: any ``tools``/``tool_choice`` and the
    bridge marker are removed.
    """
    base = {key: value for key, value in (payload or {}).items() if key not in ("tools", "tool_choice", TOOL_BRIDGE_FLAG)}

    if mode is ToolBridgeMode.NONE:
        return base

    base[TOOL_BRIDGE_FLAG] = True
    base["tools"] = bridge_tools(mode)
    base["tool_choice"] = dict(_PINNED_CHOICE, function=dict(_PINNED_CHOICE["function"])) if mode is ToolBridgeMode.MINIMAL else "auto"
    return base


def _copy_tool(tool: dict[str, Any]) -> dict[str, Any]:
    return {"type": tool["type"], "function": dict(tool["function"])}
