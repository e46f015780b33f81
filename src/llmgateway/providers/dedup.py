"""In-flight request coalescing and short-lived result caching.

Identical requests issued while one is already on the wire share that call's
outcome.  Completed results are cached for a short window: longer for
deterministic payloads (temperature exactly 0), and for non-deterministic
payloads only when explicitly enabled.

Each :class:`~llmgateway.providers.gateway.LLMGateway` owns its own
:class:`RequestDeduplicator`, so separate gateway instances never share state.
"""

import asyncio
import hashlib
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from llmgateway.providers import metrics
from llmgateway.providers.serialization import stable_stringify

__all__ = [
    "CacheEntry",
    "DedupConfig",
    "RequestDeduplicator",
    "fingerprint",
    "is_deterministic_payload",
    "stable_stringify",
]

_log = structlog.get_logger(__name__)

T = TypeVar("T")

# Objects searched for a temperature; None is the payload itself.
_TEMPERATURE_LOCATIONS: tuple[str | None, ...] = (None, "generationConfig", "options")


@dataclass
class CacheEntry:
    fingerprint: str
    timestamp: float  # ms
    result: Any


@dataclass(frozen=True)
class DedupConfig:
    """Deduplication knobs; see :class:`llmgateway.config.Settings`."""

    enabled: bool = True
    window_ms: int = 2500
    window_ms_deterministic: int = 30000
    max_entries: int = 100
    cache_nondeterministic: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "DedupConfig":
        return cls(
            enabled=settings.llm_dedup,
            window_ms=settings.llm_dedup_window_ms,
            window_ms_deterministic=settings.llm_dedup_window_ms_deterministic,
            max_entries=settings.llm_dedup_max_entries,
            cache_nondeterministic=settings.llm_dedup_cache_nondeterministic,
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_deterministic_payload(payload: Any) -> bool:
    """True when the first numeric temperature found is exactly zero.

    Looked up at the top level, then in ``generationConfig`` (Google) and
    ``options`` (Ollama).  NaN is never deterministic.
    """
    if not isinstance(payload, dict):
        return False
    for container in _TEMPERATURE_LOCATIONS:
        scope = payload if container is None else payload.get(container)
        if not isinstance(scope, dict):
            continue
        temperature = scope.get("temperature")
        if _is_number(temperature):
            return not math.isnan(temperature) and temperature == 0
    return False


def fingerprint(provider: str, model: str, payload: Any) -> str:
    key = f"{provider or ''}/{model or ''}:{stable_stringify(payload)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


def _retrieve_exception(task: "asyncio.Task[Any]") -> None:
    # Marks the exception as retrieved when every caller has gone away.
    if not task.cancelled():
        task.exception()


class RequestDeduplicator:
    """Coalesces concurrent identical calls and caches recent results.

    Args:
        config: Windows, bounds and feature switches.
        clock: Millisecond clock; injectable for tests.
    """

    def __init__(
        self,
        config: DedupConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or DedupConfig()
        self._clock = clock or _monotonic_ms
        self._lock = asyncio.Lock()
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._recent: dict[str, CacheEntry] = {}

    @property
    def cache_size(self) -> int:
        return len(self._recent)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def cached_fingerprints(self) -> list[str]:
        return list(self._recent)

    async def clear(self) -> None:
        async with self._lock:
            self._recent.clear()

    async def dedupe(
        self,
        provider: str,
        model: str,
        payload: Any,
        invoke: Callable[[], Awaitable[T]],
        disabled: bool = False,
        context: metrics.MetricsContext | None = None,
    ) -> T:
        """Return ``await invoke()``, shared or cached where allowed."""
        if disabled or not self.config.enabled:
            return await invoke()

        key = fingerprint(provider, model, payload)
        deterministic = is_deterministic_payload(payload)
        cacheable = deterministic or self.config.cache_nondeterministic
        window = self.config.window_ms_deterministic if deterministic else self.config.window_ms
        context = context or metrics.MetricsContext(provider=provider, model=model)

        async with self._lock:
            if cacheable and window > 0:
                entry = self._recent.get(key)
                if entry is not None and self._clock() - (entry.timestamp or 0) <= window:
                    metrics.record("dedup_recent", context)
                    _log.debug("llm_dedup_hit", kind="recent", provider=provider, model=model)
                    return entry.result

            task = self._inflight.get(key)
            if task is not None:
                metrics.record("dedup_inflight", context)
                _log.debug("llm_dedup_hit", kind="inflight", provider=provider, model=model)
            else:
                task = asyncio.ensure_future(self._run(key, invoke, cacheable))
                task.add_done_callback(_retrieve_exception)
                self._inflight[key] = task

        # Abandoned callers must not cancel the call other callers share.
        return await asyncio.shield(task)

    async def _run(self, key: str, invoke: Callable[[], Awaitable[T]], cacheable: bool) -> T:
        try:
            result = await invoke()
            if cacheable:
                async with self._lock:
                    self._recent.pop(key, None)
                    self._recent[key] = CacheEntry(fingerprint=key, timestamp=self._clock(), result=result)
                    self._evict()
            return result
        finally:
            async with self._lock:
                if self._inflight.get(key) is asyncio.current_task():
                    del self._inflight[key]

    def _evict(self) -> None:
        excess = len(self._recent) - self.config.max_entries
        if excess <= 0:
            return
        # sorted() is stable: equal timestamps keep insertion order.
        oldest = sorted(self._recent.values(), key=lambda entry: entry.timestamp or 0)[:excess]
        for entry in oldest:
            del self._recent[entry.fingerprint]

