"""Tests for the wire-body sanitizer and the unsupported-parameter stripper."""

import copy

import pytest

from llmgateway.providers.sanitizer import sanitize_payload, strip_unsupported_params
from llmgateway.providers.tool_bridge import TOOL_BRIDGE_FLAG

_TOOLS = [{"type": "function", "function": {"name": "respond_with_text"}}]

_PAYLOADS = [
    {"model": "m", "messages": [{"role": "user", "content": "hi"}]},
    {
        "model": "m",
        "tools": _TOOLS,
        "tool_choice": "auto",
        "functions": [{"name": "f"}],
        "function_call": "auto",
        "parallel_tool_calls": True,
        "response_format": {},
        "__gateway_trace": "x",
        "messages": [
            {"role": "assistant", "content": "", "tool_calls": [{"id": "1"}], "name": " "},
            {"role": "user", "content": "hi", "name": "alice"},
            "not-a-message",
        ],
    },
    {"model": "m", "response_format": {"type": "json_object"}, "messages": "raw"},
    {},
]


class TestSanitizePayload:
    def test_removes_tool_fields_without_marker(self) -> None:
        result = sanitize_payload("openai", _PAYLOADS[1])
        for key in ("tools", "tool_choice", "functions", "function_call", "parallel_tool_calls"):
            assert key not in result

    def test_bridge_marker_keeps_tools_and_is_stripped(self) -> None:
        payload = {**_PAYLOADS[1], TOOL_BRIDGE_FLAG: True}
        result = sanitize_payload("openai", payload)
        assert result["tools"] == _TOOLS
        assert result["tool_choice"] == "auto"
        assert TOOL_BRIDGE_FLAG not in result

    def test_bridge_marker_leaves_every_tool_field(self) -> None:
        payload = {**_PAYLOADS[1], TOOL_BRIDGE_FLAG: True}
        result = sanitize_payload("openai", payload)
        assert result["functions"] == [{"name": "f"}]
        assert result["function_call"] == "auto"
        assert result["parallel_tool_calls"] is True

    def test_internal_prefixed_fields_dropped(self) -> None:
        assert "__gateway_trace" not in sanitize_payload("openai", _PAYLOADS[1])

    def test_empty_response_format_dropped_non_empty_kept(self) -> None:
        assert "response_format" not in sanitize_payload("openai", _PAYLOADS[1])
        assert sanitize_payload("openai", _PAYLOADS[2])["response_format"] == {"type": "json_object"}

    def test_message_cleanup(self) -> None:
        messages = sanitize_payload("openai", _PAYLOADS[1])["messages"]
        assert messages == [
            {"role": "assistant", "content": ""},
            {"role": "user", "content": "hi", "name": "alice"},
        ]

    def test_non_list_messages_untouched(self) -> None:
        assert sanitize_payload("openai", _PAYLOADS[2])["messages"] == "raw"

    @pytest.mark.parametrize("value", [None, "text", 42, ["a"]])
    def test_non_dict_passes_through(self, value: object) -> None:
        assert sanitize_payload("openai", value) is value

    @pytest.mark.parametrize("payload", _PAYLOADS)
    def test_idempotent(self, payload: dict) -> None:
        once = sanitize_payload("openai", payload)
        assert sanitize_payload("openai", once) == once

    @pytest.mark.parametrize("payload", [*_PAYLOADS, {**_PAYLOADS[1], TOOL_BRIDGE_FLAG: True}])
    def test_never_mutates_input(self, payload: dict) -> None:
        snapshot = copy.deepcopy(payload)
        sanitize_payload("openai", payload)
        assert payload == snapshot


class TestStripUnsupportedParams:
    def test_strips_named_fields(self) -> None:
        payload = {"model": "o1", "temperature": 0.7, "top_p": 0.9, "max_tokens": 10}
        result = strip_unsupported_params(payload, "Unsupported parameter: 'temperature' is not supported")
        assert result == {"model": "o1", "top_p": 0.9, "max_tokens": 10}
        assert payload["temperature"] == 0.7

    def test_top_p_alias(self) -> None:
        result = strip_unsupported_params({"topP": 1, "top_p": 0.9}, "Unsupported parameter: topP")
        assert "top_p" not in result

    def test_max_output_tokens(self) -> None:
        result = strip_unsupported_params(
            {"max_output_tokens": 5, "input": []}, "Unsupported parameter: 'max_output_tokens'"
        )
        assert result == {"input": []}

    def test_returns_same_object_when_nothing_to_strip(self) -> None:
        payload = {"model": "o1"}
        assert strip_unsupported_params(payload, "Unsupported parameter: temperature") is payload
        assert strip_unsupported_params(payload, "rate limited") is payload
        assert strip_unsupported_params(payload, None) is payload
