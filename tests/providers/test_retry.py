"""Tests for the tool-calling recovery policy and orchestrator."""

import pytest

from llmgateway.providers.errors import ProviderError, ToolSchemaError, UpstreamError
from llmgateway.providers.models import ToolBridgeMode
from llmgateway.providers.retry import RECOVERY_POLICY, RetryOrchestrator, match_recovery_rule

_NOT_DECLARED = "Tool call validation failed: attempted to call tool 'read_file' which was not in request.tools"
_BAD_ARGS = "Failed to parse tool call arguments as JSON"
_REJECTED = "This model does not support tools: unsupported feature"
_CHOICE_NONE = "Tool choice is none, but model called a tool"


def _error(message: str) -> ToolSchemaError:
    return ToolSchemaError(message, status_code=400, body={"error": {"message": message}})


class ScriptedSend:
    """Records the bridge mode of each attempt and replays scripted outcomes."""

    def __init__(self, *outcomes: Exception | str) -> None:
        self.outcomes = list(outcomes)
        self.modes: list[ToolBridgeMode] = []

    async def __call__(self, mode: ToolBridgeMode) -> str:
        self.modes.append(mode)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestMatchRecoveryRule:
    @pytest.mark.parametrize(
        ("message", "carried_tools", "expected"),
        [
            (_NOT_DECLARED, False, "tool_not_declared"),
            ("request.tools did not include it: tool foo not in list", False, "tool_not_declared"),
            (_BAD_ARGS.upper(), True, "malformed_tool_arguments"),
            (_REJECTED, True, "tools_rejected"),
            (_CHOICE_NONE, False, "tool_choice_none"),
        ],
    )
    def test_rules(self, message: str, carried_tools: bool, expected: str) -> None:
        rule = match_recovery_rule(message, carried_tools)
        assert rule is not None and rule.name == expected

    def test_tools_rejected_requires_tools_on_the_attempt(self) -> None:
        assert match_recovery_rule(_REJECTED, carried_tools=False) is None

    def test_unsupported_parameter_is_not_a_tool_rejection(self) -> None:
        assert match_recovery_rule("Unsupported parameter: 'tools' is invalid here for temperature", True) is None

    @pytest.mark.parametrize("message", ["", None, "rate limit exceeded", "Invalid API key"])
    def test_unrelated_errors(self, message: str | None) -> None:
        assert match_recovery_rule(message, True) is None

    def test_policy_is_ordered(self) -> None:
        assert [rule.name for rule in RECOVERY_POLICY] == [
            "tool_not_declared",
            "malformed_tool_arguments",
            "tools_rejected",
            "tool_choice_none",
        ]


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestRetryOrchestrator:
    async def test_success_on_first_attempt(self) -> None:
        send = ScriptedSend("ok")
        assert await RetryOrchestrator().run(send, ToolBridgeMode.NONE) == "ok"
        assert send.modes == [ToolBridgeMode.NONE]

    async def test_tool_not_declared_forces_full_bridge(self) -> None:
        send = ScriptedSend(_error(_NOT_DECLARED), "ok")
        assert await RetryOrchestrator().run(send, ToolBridgeMode.NONE) == "ok"
        assert send.modes == [ToolBridgeMode.NONE, ToolBridgeMode.FULL]

    async def test_tool_not_declared_resends_full_even_when_already_full(self) -> None:
        send = ScriptedSend(_error(_NOT_DECLARED), "ok")
        assert await RetryOrchestrator().run(send, ToolBridgeMode.FULL) == "ok"
        assert send.modes == [ToolBridgeMode.FULL, ToolBridgeMode.FULL]

    async def test_malformed_arguments_resend_plain(self) -> None:
        send = ScriptedSend(_error(_BAD_ARGS), "ok")
        await RetryOrchestrator().run(send, ToolBridgeMode.FULL)
        assert send.modes == [ToolBridgeMode.FULL, ToolBridgeMode.NONE]

    async def test_tools_rejected_resend_plain(self) -> None:
        send = ScriptedSend(_error(_REJECTED), "ok")
        await RetryOrchestrator().run(send, ToolBridgeMode.FULL)
        assert send.modes == [ToolBridgeMode.FULL, ToolBridgeMode.NONE]

    async def test_tool_choice_none_escalates_minimal_then_full(self) -> None:
        send = ScriptedSend(_error(_CHOICE_NONE), _error(_CHOICE_NONE), "ok")
        assert await RetryOrchestrator().run(send, ToolBridgeMode.NONE) == "ok"
        assert send.modes == [ToolBridgeMode.NONE, ToolBridgeMode.MINIMAL, ToolBridgeMode.FULL]

    async def test_tool_choice_none_three_failures_raise_latest(self) -> None:
        last = _error(_CHOICE_NONE + " (third)")
        send = ScriptedSend(_error(_CHOICE_NONE), _error(_CHOICE_NONE), last)
        with pytest.raises(ToolSchemaError) as exc_info:
            await RetryOrchestrator().run(send, ToolBridgeMode.NONE)
        assert exc_info.value is last
        assert len(send.modes) == 3

    async def test_different_failure_after_retry_is_raised(self) -> None:
        other = UpstreamError("model overloaded", status_code=400)
        send = ScriptedSend(_error(_CHOICE_NONE), other)
        with pytest.raises(UpstreamError) as exc_info:
            await RetryOrchestrator().run(send, ToolBridgeMode.NONE)
        assert exc_info.value is other
        assert send.modes == [ToolBridgeMode.NONE, ToolBridgeMode.MINIMAL]

    async def test_single_step_rule_is_not_repeated(self) -> None:
        send = ScriptedSend(_error(_BAD_ARGS), _error(_BAD_ARGS))
        with pytest.raises(ToolSchemaError):
            await RetryOrchestrator().run(send, ToolBridgeMode.FULL)
        assert len(send.modes) == 2

    async def test_unrelated_error_not_retried(self) -> None:
        error = ProviderError("boom")
        send = ScriptedSend(error)
        with pytest.raises(ProviderError) as exc_info:
            await RetryOrchestrator().run(send, ToolBridgeMode.FULL)
        assert exc_info.value is error
        assert len(send.modes) == 1

    async def test_disabled_reraises_immediately(self) -> None:
        send = ScriptedSend(_error(_NOT_DECLARED))
        with pytest.raises(ToolSchemaError):
            await RetryOrchestrator().run(send, ToolBridgeMode.NONE, disabled=True)
        assert len(send.modes) == 1
