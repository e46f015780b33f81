"""Interfaces to the systems the gateway depends on but does not own.

The gateway reads its persisted configuration from a :class:`CredentialStore`,
decrypts the stored key with a :data:`Decryptor` and reports every call made
with that configuration to an :class:`AuditSink`.  Default implementations
backed by :class:`llmgateway.config.Settings` and structlog are provided for
the HTTP service.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from llmgateway.providers.profiles import requires_api_key

_log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ActiveConfig:
    """The persisted provider configuration, key still encrypted."""

    provider: str
    model: str | None = None
    api_url: str | None = None
    encrypted_key: str | None = field(default=None, repr=False)
    requires_key: bool | None = None
    endpoint_path: str | None = None


@dataclass(frozen=True)
class AuditRecord:
    provider: str
    model: str
    request_type: str
    success: bool
    error_message: str | None = None
    response_time_ms: float | None = None


class CredentialStore(Protocol):
    async def get_active_config(self) -> ActiveConfig | None: ...


class AuditSink(Protocol):
    async def record(self, record: AuditRecord) -> None: ...


Decryptor = Callable[[str], "str | None"]


def passthrough_decryptor(value: str) -> str | None:
    """Decryptor for stores that hold the key in plaintext."""
    return value or None


class SettingsCredentialStore:
    """Reads the active configuration from ``LLM_*`` settings."""

    def __init__(self, settings: Any) -> None:
        self._settings = settings

    async def get_active_config(self) -> ActiveConfig | None:
        s = self._settings
        if not s.llm_provider:
            return None
        return ActiveConfig(
            provider=s.llm_provider,
            model=s.llm_model,
            api_url=s.llm_api_url,
            encrypted_key=s.llm_api_key.get_secret_value() if s.llm_api_key else None,
            requires_key=requires_api_key(s.llm_provider),
            endpoint_path=s.llm_endpoint_path,
        )


class LoggingAuditSink:
    """Writes audit records to the structured log."""

    async def record(self, record: AuditRecord) -> None:
        _log.info(
            "llm_audit",
            provider=record.provider,
            model=record.model,
            request_type=record.request_type,
            success=record.success,
            error=record.error_message,
            response_time_ms=record.response_time_ms,
        )
