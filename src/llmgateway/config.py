from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _int_or(value: Any, default: int, minimum: int) -> int:
    """Parse *value* as an int; fall back to *default* when invalid or below *minimum*."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        parsed = value
    else:
        try:
            parsed = int(str(value).strip())
        except ValueError:
            return default
    return parsed if parsed >= minimum else default


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="llm-gateway")
    app_version: str = Field(default="0.1.0")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Observability
    otel_exporter_otlp_endpoint: str = Field(default="http://jaeger:4318")
    otel_service_name: str = Field(default="llm-gateway")
    log_level: str = Field(default="INFO")

    # Persisted gateway configuration (read by SettingsCredentialStore)
    llm_provider: str | None = Field(default=None)
    llm_model: str | None = Field(default=None)
    llm_api_url: str | None = Field(default=None)
    llm_api_key: SecretStr | None = Field(default=None)
    llm_endpoint_path: str | None = Field(default=None)

    # Per-provider keys used by scripts/probe_providers.py
    openai_api_key: SecretStr | None = Field(default=None)
    anthropic_api_key: SecretStr | None = Field(default=None)
    google_api_key: SecretStr | None = Field(default=None)
    cohere_api_key: SecretStr | None = Field(default=None)
    mistral_api_key: SecretStr | None = Field(default=None)
    together_api_key: SecretStr | None = Field(default=None)
    groq_api_key: SecretStr | None = Field(default=None)
    perplexity_api_key: SecretStr | None = Field(default=None)

    # LLM call behaviour
    llm_timeout_ms: int = Field(default=30000)
    llm_fallback_timeout_ms: int = Field(default=60000)
    llm_max_retries: int = Field(default=3)
    llm_debug: bool = Field(default=False)

    # Request deduplication
    llm_dedup: bool = Field(default=True)
    llm_dedup_window_ms: int = Field(default=2500)
    llm_dedup_window_ms_deterministic: int = Field(default=30000)
    llm_dedup_max_entries: int = Field(default=100)
    llm_dedup_cache_nondeterministic: bool = Field(default=False)

    # Unparseable or out-of-range values fall back to the default instead of
    # failing startup.

    @field_validator("llm_timeout_ms", mode="before")
    @classmethod
    def _timeout(cls, value: Any) -> int:
        return _int_or(value, 30000, minimum=1)

    @field_validator("llm_fallback_timeout_ms", mode="before")
    @classmethod
    def _fallback_timeout(cls, value: Any) -> int:
        return _int_or(value, 60000, minimum=1)

    @field_validator("llm_max_retries", mode="before")
    @classmethod
    def _max_retries(cls, value: Any) -> int:
        return _int_or(value, 3, minimum=1)

    @field_validator("llm_dedup_window_ms", mode="before")
    @classmethod
    def _window(cls, value: Any) -> int:
        return _int_or(value, 2500, minimum=0)

    @field_validator("llm_dedup_window_ms_deterministic", mode="before")
    @classmethod
    def _window_deterministic(cls, value: Any) -> int:
        return _int_or(value, 30000, minimum=0)

    @field_validator("llm_dedup_max_entries", mode="before")
    @classmethod
    def _max_entries(cls, value: Any) -> int:
        return _int_or(value, 100, minimum=1)

    @field_validator("llm_dedup", mode="before")
    @classmethod
    def _dedup_enabled(cls, value: Any) -> bool:
        # Only an explicit "0" / "false" turns deduplication off.
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() not in ("0", "false")

    @field_validator("llm_debug", "llm_dedup_cache_nondeterministic", mode="before")
    @classmethod
    def _opt_in(cls, value: Any) -> bool:
        # Only "1" / "true" turns these on.
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true")

    def provider_api_key(self, provider: str) -> str | None:
        """Plaintext key from ``<PROVIDER>_API_KEY``, if set."""
        secret = getattr(self, f"{provider.lower()}_api_key", None)
        return secret.get_secret_value() if isinstance(secret, SecretStr) else None


settings = Settings()
