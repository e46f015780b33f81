"""Canonical JSON helpers shared by the extractor, deduplicator and transport."""

import json
from typing import Any

from llmgateway.providers.errors import SerializationError

# Prefix reserved for gateway-internal keys; never sent upstream, never fingerprinted.
INTERNAL_FLAG_PREFIX = "__gateway"

CIRCULAR_MARKER = '"[Circular]"'


def to_json(value: Any) -> str:
    """Compact JSON (``{"a":1}``) with non-ASCII kept as is.

    Raises:
        SerializationError: If *value* is not JSON-serializable or is circular.
    """
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Cannot serialize {type(value).__name__}: {exc}", original_error=exc) from exc


def to_json_or_str(value: Any) -> str:
    try:
        return to_json(value)
    except SerializationError:
        return str(value)


def stable_stringify(value: Any) -> str:
    """Deterministic serialization used for request fingerprints.

    Mapping keys are sorted, keys starting with :data:`INTERNAL_FLAG_PREFIX`
    are skipped, values that JSON cannot represent are stringified, and a
    container that appears inside itself is replaced by ``"[Circular]"``.
    """
    return _stringify(value, set())


def _stringify(value: Any, ancestors: set[int]) -> str:
    if value is None or isinstance(value, (bool, int, float, str)):
        return json.dumps(value, ensure_ascii=False)

    if not isinstance(value, (dict, list, tuple)):
        return json.dumps(str(value), ensure_ascii=False)

    marker = id(value)
    if marker in ancestors:
        return CIRCULAR_MARKER
    ancestors.add(marker)
    try:
        if isinstance(value, dict):
            keys = sorted(
                str(key) for key in value if not str(key).startswith(INTERNAL_FLAG_PREFIX)
            )
            lookup = {str(key): item for key, item in value.items()}
            entries = (f"{json.dumps(key)}:{_stringify(lookup[key], ancestors)}" for key in keys)
            return "{" + ",".join(entries) + "}"
        return "[" + ",".join(_stringify(item, ancestors) for item in value) + "]"
    finally:
        ancestors.discard(marker)
