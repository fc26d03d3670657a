"""Process settings for the board sync engine.

Configuration is loaded once at startup from environment variables and an
optional ``.env`` file.  Variable names follow the board's deployment
(``TYPESENSE_HOST``, ``POLLING_INTERVAL_MS`` ...), so the same ``.env``
drives the web app and the sync process.

Manifesto:
    - **Pydantic validation:** Type-checked at startup, not mid-cycle
    - **Environment-driven:** Reads from env vars and .env files
    - **Degrade, don't crash:** Missing index credentials put the engine in
      disabled mode instead of failing the host process

Examples:
    >>> settings = SyncSettings(typesense_host="localhost", typesense_api_key="xyz")
    >>> settings.index_configured
    True
    >>> settings.polling_interval_seconds
    10.0

Tags:
    settings, configuration, pydantic, environment, boardsync
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import InvalidConfigError

_PROTOCOLS = frozenset({"http", "https"})


class SyncSettings(BaseSettings):
    """Settings for one sync process.

    Fields
    ──────
    database_url            : PostgreSQL DSN of the board database
    typesense_*             : Search index connection (host, port, protocol, key)
    *_collection            : Collection names per record type
    polling_interval_ms     : Scheduler tick interval
    upsert_batch_size       : Max documents per import request
    persist_watermark       : Store the watermark in PostgreSQL instead of memory
    reject_alert_threshold  : Consecutive rejections before a dead-letter alert
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ── Primary store ────────────────────────────────────────────
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("database_url", "DATABASE_URL", "ZERO_UPSTREAM_DB"),
    )
    db_min_pool_size: int = Field(default=1, validation_alias=AliasChoices("db_min_pool_size", "DB_MIN_POOL_SIZE"))
    db_max_pool_size: int = Field(default=5, validation_alias=AliasChoices("db_max_pool_size", "DB_MAX_POOL_SIZE"))

    # ── Search index ─────────────────────────────────────────────
    typesense_host: str | None = Field(
        default=None, validation_alias=AliasChoices("typesense_host", "TYPESENSE_HOST")
    )
    typesense_port: int = Field(
        default=443, validation_alias=AliasChoices("typesense_port", "TYPESENSE_PORT")
    )
    typesense_protocol: str = Field(
        default="https", validation_alias=AliasChoices("typesense_protocol", "TYPESENSE_PROTOCOL")
    )
    typesense_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "typesense_api_key", "TYPESENSE_API_KEY", "TYPESENSE_ADMIN_API_KEY"
        ),
        repr=False,
    )
    connection_timeout_seconds: float = Field(
        default=10.0,
        validation_alias=AliasChoices(
            "connection_timeout_seconds", "TYPESENSE_CONNECTION_TIMEOUT_SECONDS"
        ),
    )
    suggestions_collection: str = Field(
        default="suggestions",
        validation_alias=AliasChoices(
            "suggestions_collection",
            "TYPESENSE_SUGGESTIONS_COLLECTION",
            "VITE_TYPESENSE_SUGGESTIONS_COLLECTION",
        ),
    )
    comments_collection: str = Field(
        default="comments",
        validation_alias=AliasChoices(
            "comments_collection",
            "TYPESENSE_COMMENTS_COLLECTION",
            "VITE_TYPESENSE_COMMENTS_COLLECTION",
        ),
    )

    # ── Sync cycle ───────────────────────────────────────────────
    polling_interval_ms: int = Field(
        default=10_000, validation_alias=AliasChoices("polling_interval_ms", "POLLING_INTERVAL_MS")
    )
    upsert_batch_size: int = Field(
        default=100, validation_alias=AliasChoices("upsert_batch_size", "SYNC_UPSERT_BATCH_SIZE")
    )
    persist_watermark: bool = Field(
        default=False, validation_alias=AliasChoices("persist_watermark", "SYNC_PERSIST_WATERMARK")
    )
    watermark_key: str = Field(
        default="board_search", validation_alias=AliasChoices("watermark_key", "SYNC_WATERMARK_KEY")
    )
    reject_alert_threshold: int = Field(
        default=3,
        validation_alias=AliasChoices("reject_alert_threshold", "SYNC_REJECT_ALERT_THRESHOLD"),
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("log_level", "LOG_LEVEL"))
    log_json: bool | None = Field(default=None, validation_alias=AliasChoices("log_json", "LOG_JSON"))

    @field_validator(
        "polling_interval_ms",
        "upsert_batch_size",
        "reject_alert_threshold",
        "db_max_pool_size",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("typesense_protocol")
    @classmethod
    def _known_protocol(cls, value: str) -> str:
        value = value.lower()
        if value not in _PROTOCOLS:
            raise ValueError(f"must be one of {sorted(_PROTOCOLS)}")
        return value

    @property
    def index_configured(self) -> bool:
        """True when both index host and API key are present."""
        return bool(self.typesense_host and self.typesense_api_key)

    @property
    def index_base_url(self) -> str:
        return f"{self.typesense_protocol}://{self.typesense_host}:{self.typesense_port}"

    @property
    def polling_interval_seconds(self) -> float:
        return self.polling_interval_ms / 1000


def load_settings(**overrides: Any) -> SyncSettings:
    """Load settings from the environment, raising ``InvalidConfigError`` on bad values."""
    try:
        return SyncSettings(**overrides)
    except ValidationError as exc:
        first = exc.errors()[0]
        key = ".".join(str(part) for part in first.get("loc", ())) or "settings"
        raise InvalidConfigError(key, first.get("input"), f"Invalid configuration for {key}: {first.get('msg')}") from exc


__all__ = ["SyncSettings", "load_settings"]
