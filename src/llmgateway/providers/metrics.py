"""Prometheus counters for gateway request events.

Exposed through the ``/metrics`` mount in :mod:`llmgateway.main`.
"""

from dataclasses import dataclass

from prometheus_client import Counter

REQUESTS_TOTAL = Counter(
    "llm_gateway_requests_total",
    "LLM gateway request events (requested, outbound, dedup_recent, dedup_inflight).",
    ["event", "provider", "model", "request_type", "phase"],
)


@dataclass(frozen=True)
class MetricsContext:
    provider: str
    model: str
    request_type: str = "generate"
    phase: str = "unknown"


def record(event: str, context: MetricsContext) -> None:
    REQUESTS_TOTAL.labels(
        event=event,
        provider=context.provider or "",
        model=context.model or "",
        request_type=context.request_type,
        phase=context.phase,
    ).inc()
