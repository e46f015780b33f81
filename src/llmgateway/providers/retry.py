"""Tool-calling recovery after an upstream rejection.

Upstream error messages are classified against :data:`RECOVERY_POLICY`, an
ordered table of :class:`RecoveryRule` entries.  The first matching rule names
the tool-bridge modes to resend with; the orchestrator tries them in order,
moving on to the next mode only while failures keep matching the same rule.

Transient failures (rate limits, timeouts, 5xx) are not handled here; the
transport retries those with tenacity before an error ever reaches this layer.
"""

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from llmgateway.providers.errors import ProviderError
from llmgateway.providers.extractor import get_error_message
from llmgateway.providers.models import ToolBridgeMode

_log = structlog.get_logger(__name__)

T = TypeVar("T")

_TOOLS_WORD = re.compile(r"\btools\b", re.IGNORECASE)
_REJECTION_WORDS = re.compile(r"unsupported|not supported|unknown|unrecognized|invalid", re.IGNORECASE)


@dataclass(frozen=True)
class RecoveryRule:
    """One row of the recovery table.

    Attributes:
        name: Stable identifier used in logs.
        predicate: ``(lowercased message, failed attempt carried tools) -> bool``.
        modes: Bridge modes to resend with, in order.
    """

    name: str
    predicate: Callable[[str, bool], bool]
    modes: tuple[ToolBridgeMode, ...]


def _tool_not_declared(message: str, carried_tools: bool) -> bool:
    return (
        ("tool call validation failed" in message and "not in request.tools" in message)
        or ("not in request.tools" in message and "attempted to call tool" in message)
        or ("request.tools" in message and "not in" in message and "tool" in message)
    )


def _malformed_tool_arguments(message: str, carried_tools: bool) -> bool:
    return "failed to parse tool call arguments as json" in message


def _tools_rejected(message: str, carried_tools: bool) -> bool:
    return (
        carried_tools
        and "unsupported parameter" not in message
        and bool(_TOOLS_WORD.search(message))
        and bool(_REJECTION_WORDS.search(message))
    )


def _tool_choice_none(message: str, carried_tools: bool) -> bool:
    return "tool choice is none, but model called a tool" in message


RECOVERY_POLICY: tuple[RecoveryRule, ...] = (
    RecoveryRule("tool_not_declared", _tool_not_declared, (ToolBridgeMode.FULL,)),
    RecoveryRule("malformed_tool_arguments", _malformed_tool_arguments, (ToolBridgeMode.NONE,)),
    RecoveryRule("tools_rejected", _tools_rejected, (ToolBridgeMode.NONE,)),
    RecoveryRule("tool_choice_none", _tool_choice_none, (ToolBridgeMode.MINIMAL, ToolBridgeMode.FULL)),
)


def match_recovery_rule(
    message: str | None,
    carried_tools: bool,
    policy: tuple[RecoveryRule, ...] = RECOVERY_POLICY,
) -> RecoveryRule | None:
    """First rule in *policy* matching *message* (case-insensitive), or ``None``."""
    if not message:
        return None
    lowered = message.lower()
    return next((rule for rule in policy if rule.predicate(lowered, carried_tools)), None)


class RetryOrchestrator:
    """Runs one logical call through the recovery state machine.

    Attempts are strictly sequential and only the first failure selects a
    rule, so a call makes at most ``1 + len(rule.modes)`` requests.
    """

    def __init__(self, policy: tuple[RecoveryRule, ...] = RECOVERY_POLICY) -> None:
        self._policy = policy

    async def run(
        self,
        send: Callable[[ToolBridgeMode], Awaitable[T]],
        initial_mode: ToolBridgeMode,
        disabled: bool = False,
    ) -> T:
        """Call ``send(initial_mode)`` and recover from tool-calling rejections.

        Args:
            send: Issues one attempt with the given bridge mode.
            initial_mode: Mode chosen by the default bridge policy.
            disabled: Re-raise the first failure untouched.

        Raises:
            ProviderError: The first error when no rule applies, otherwise the
                most recent error once the rule's modes are exhausted.
        """
        try:
            return await send(initial_mode)
        except ProviderError as exc:
            if disabled:
                raise
            rule = match_recovery_rule(
                get_error_message(exc), initial_mode is not ToolBridgeMode.NONE, self._policy
            )
            if rule is None:
                raise
            last_error = exc

        for attempt, mode in enumerate(rule.modes, start=2):
            _log.warning(
                "llm_tool_bridge_retry",
                rule=rule.name,
                mode=mode.value,
                attempt=attempt,
                error=get_error_message(last_error),
            )
            try:
                return await send(mode)
            except ProviderError as exc:
                last_error = exc
                message = get_error_message(exc).lower()
                if not rule.predicate(message, mode is not ToolBridgeMode.NONE):
                    raise

        raise last_error
