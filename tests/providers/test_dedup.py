"""Tests for in-flight coalescing and the deterministic result cache.

``invoke`` callables are plain coroutines counting their calls, and the cache
clock is a mutable fake so window expiry is tested without sleeping.
"""

import asyncio
import math
from typing import Any

import pytest

from llmgateway.providers.dedup import (
    DedupConfig,
    RequestDeduplicator,
    fingerprint,
    is_deterministic_payload,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingInvoke:
    """Returns ``result-<n>`` for the n-th call, optionally waiting on a gate."""

    def __init__(self, gate: asyncio.Event | None = None, error: Exception | None = None) -> None:
        self.calls = 0
        self.gate = gate
        self.error = error

    async def __call__(self) -> str:
        self.calls += 1
        call = self.calls
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return f"result-{call}"


def _payload(temperature: float, content: str = "hi") -> dict[str, Any]:
    return {"messages": [{"role": "user", "content": content}], "temperature": temperature}


# ---------------------------------------------------------------------------
# Classification and fingerprints
# ---------------------------------------------------------------------------


class TestDeterminism:
    @pytest.mark.parametrize(
        "payload",
        [
            {"temperature": 0},
            {"temperature": 0.0},
            {"generationConfig": {"temperature": 0}},
            {"options": {"temperature": 0, "num_predict": 10}},
        ],
    )
    def test_zero_temperature_is_deterministic(self, payload: dict) -> None:
        assert is_deterministic_payload(payload) is True

    @pytest.mark.parametrize(
        "payload",
        [
            {"temperature": 0.7},
            {"temperature": -1},
            {"temperature": "0"},
            {"temperature": math.nan},
            {"temperature": False},
            {},
            None,
            "temperature=0",
        ],
    )
    def test_everything_else_is_not(self, payload: Any) -> None:
        assert is_deterministic_payload(payload) is False

    def test_top_level_temperature_wins(self) -> None:
        assert is_deterministic_payload({"temperature": 0.5, "options": {"temperature": 0}}) is False


class TestFingerprint:
    def test_key_order_does_not_matter(self) -> None:
        a = fingerprint("openai", "gpt", {"a": 1, "b": [1, {"c": 2, "d": 3}]})
        b = fingerprint("openai", "gpt", {"b": [1, {"d": 3, "c": 2}], "a": 1})
        assert a == b

    def test_internal_flags_ignored(self) -> None:
        assert fingerprint("openai", "gpt", {"a": 1, "__gateway_tool_bridge": True}) == fingerprint(
            "openai", "gpt", {"a": 1}
        )

    def test_provider_and_model_are_part_of_the_key(self) -> None:
        assert fingerprint("openai", "gpt", {}) != fingerprint("groq", "gpt", {})
        assert fingerprint("openai", "gpt", {}) != fingerprint("openai", "gpt-2", {})


# ---------------------------------------------------------------------------
# Coalescing and caching
# ---------------------------------------------------------------------------


class TestRequestDeduplicator:
    async def test_concurrent_identical_calls_share_one_invoke(self) -> None:
        gate = asyncio.Event()
        invoke = CountingInvoke(gate=gate)
        dedup = RequestDeduplicator()
        payload = _payload(0.7)

        first = asyncio.create_task(dedup.dedupe("openai", "gpt", payload, invoke))
        second = asyncio.create_task(dedup.dedupe("openai", "gpt", dict(payload), invoke))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert dedup.inflight_count == 1
        gate.set()

        assert await asyncio.gather(first, second) == ["result-1", "result-1"]
        assert invoke.calls == 1
        assert dedup.inflight_count == 0

    async def test_deterministic_result_cached_within_window(self) -> None:
        clock = FakeClock()
        invoke = CountingInvoke()
        dedup = RequestDeduplicator(clock=clock)

        first = await dedup.dedupe("openai", "gpt", _payload(0), invoke)
        clock.now += 29_000
        second = await dedup.dedupe("openai", "gpt", _payload(0), invoke)

        assert first == second == "result-1"
        assert invoke.calls == 1

    async def test_deterministic_cache_expires(self) -> None:
        clock = FakeClock()
        invoke = CountingInvoke()
        dedup = RequestDeduplicator(clock=clock)

        await dedup.dedupe("openai", "gpt", _payload(0), invoke)
        clock.now += 30_001
        assert await dedup.dedupe("openai", "gpt", _payload(0), invoke) == "result-2"

    async def test_nondeterministic_not_cached_by_default(self) -> None:
        invoke = CountingInvoke()
        dedup = RequestDeduplicator(clock=FakeClock())

        await dedup.dedupe("openai", "gpt", _payload(0.7), invoke)
        await dedup.dedupe("openai", "gpt", _payload(0.7), invoke)

        assert invoke.calls == 2
        assert dedup.cache_size == 0

    async def test_nondeterministic_cache_opt_in_uses_short_window(self) -> None:
        clock = FakeClock()
        invoke = CountingInvoke()
        dedup = RequestDeduplicator(DedupConfig(cache_nondeterministic=True), clock=clock)

        await dedup.dedupe("openai", "gpt", _payload(0.7), invoke)
        clock.now += 2_000
        assert await dedup.dedupe("openai", "gpt", _payload(0.7), invoke) == "result-1"
        clock.now += 1_000
        assert await dedup.dedupe("openai", "gpt", _payload(0.7), invoke) == "result-2"

    async def test_disabled_per_call(self) -> None:
        invoke = CountingInvoke()
        dedup = RequestDeduplicator(clock=FakeClock())

        await dedup.dedupe("openai", "gpt", _payload(0), invoke, disabled=True)
        await dedup.dedupe("openai", "gpt", _payload(0), invoke, disabled=True)

        assert invoke.calls == 2
        assert dedup.cache_size == 0

    async def test_disabled_globally(self) -> None:
        invoke = CountingInvoke()
        dedup = RequestDeduplicator(DedupConfig(enabled=False), clock=FakeClock())

        await dedup.dedupe("openai", "gpt", _payload(0), invoke)
        await dedup.dedupe("openai", "gpt", _payload(0), invoke)

        assert invoke.calls == 2

    async def test_failures_shared_but_not_cached(self) -> None:
        gate = asyncio.Event()
        invoke = CountingInvoke(gate=gate, error=RuntimeError("upstream down"))
        dedup = RequestDeduplicator(clock=FakeClock())

        tasks = [asyncio.create_task(dedup.dedupe("openai", "gpt", _payload(0), invoke)) for _ in range(2)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert invoke.calls == 1
        assert dedup.cache_size == 0
        assert dedup.inflight_count == 0

    async def test_abandoned_caller_does_not_cancel_shared_call(self) -> None:
        gate = asyncio.Event()
        invoke = CountingInvoke(gate=gate)
        dedup = RequestDeduplicator(clock=FakeClock())

        abandoned = asyncio.create_task(dedup.dedupe("openai", "gpt", _payload(0), invoke))
        survivor = asyncio.create_task(dedup.dedupe("openai", "gpt", _payload(0), invoke))
        await asyncio.sleep(0)
        abandoned.cancel()
        gate.set()

        assert await survivor == "result-1"
        assert invoke.calls == 1

    async def test_eviction_drops_oldest_entries(self) -> None:
        clock = FakeClock()
        invoke = CountingInvoke()
        dedup = RequestDeduplicator(DedupConfig(max_entries=2), clock=clock)

        keys = []
        for i in range(3):
            clock.now += 10
            payload = _payload(0, content=f"q{i}")
            keys.append(fingerprint("openai", "gpt", payload))
            await dedup.dedupe("openai", "gpt", payload, invoke)
            assert dedup.cache_size <= 2

        assert dedup.cached_fingerprints() == keys[1:]

        await dedup.dedupe("openai", "gpt", _payload(0, content="q0"), invoke)
        assert invoke.calls == 4

    async def test_clear_empties_cache(self) -> None:
        dedup = RequestDeduplicator(clock=FakeClock())
        await dedup.dedupe("openai", "gpt", _payload(0), CountingInvoke())
        await dedup.clear()
        assert dedup.cache_size == 0
