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
    app_name: str = "Binder Backend"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    # Remote document store database.
    database_url: str = "sqlite:///./dev.db"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    log_level: str = "INFO"

    # 本地 binder 文档目录（含 current binder 指针）
    local_data_dir: str = ".data/local"

    # Remote store adapter: sql | memory
    remote_store: str = "sql"

    # 云端同步：失败重试次数与指数退避的基础延迟（秒）
    sync_retry_attempts: int = 3
    sync_retry_base_delay_seconds: float = 1.0

    # Binder document bounds
    changelog_max_entries: int = 50
    max_card_position: int = 10000

    # Partitioned card writes are chunked below the host per-batch ceiling.
    remote_batch_write_limit: int = 400

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        if self.remote_store.strip().lower() == "memory":
            errors.append("REMOTE_STORE=memory is not durable and cannot be used in production")

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if self.sync_retry_attempts < 1:
            errors.append("SYNC_RETRY_ATTEMPTS must be >= 1")

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
        if self.remote_store.strip().lower() == "memory":
            warnings.append("REMOTE_STORE=memory keeps cloud binders in process memory only")
        return warnings


settings = Settings()
