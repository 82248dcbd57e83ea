from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "Todoist MCP"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"
    log_level: str = "INFO"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    # MCP endpoint + handshake identity
    mcp_path: str = "/mcp"
    mcp_protocol_version: str = "2024-11-05"
    mcp_server_name: str = "mcp-todoist"
    mcp_server_version: str = "1.0.0"

    # Advertised capabilities. All off by default so `initialize` returns `{}`.
    mcp_enable_tools: bool = False
    mcp_enable_resources: bool = False
    mcp_enable_prompts: bool = False
    mcp_enable_logging: bool = False

    # Todoist endpoints
    todoist_rest_base_url: str = "https://api.todoist.com/rest/v2"
    todoist_sync_base_url: str = "https://api.todoist.com/sync/v9"
    todoist_request_timeout_seconds: float = 10.0
    # Retries apply to 5xx / 429 / network errors only.
    todoist_max_retries: int = 2
    todoist_retry_backoff_seconds: float = 1.0

    # A second pass for the same account waits at most this long for the first one.
    sync_lock_timeout_seconds: float = 30.0
    # Push a record to Todoist right after a tool mutates it.
    push_on_write: bool = True

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if self.todoist_max_retries < 0:
            errors.append("TODOIST_MAX_RETRIES must be >= 0")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        return warnings


settings = Settings()
