from functools import lru_cache
from pathlib import Path
from typing import Any
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Gestion de Permisos"
    environment: str = "development"
    # upstream case-management API that owns the grant rows
    api_base_url: str = "http://localhost:3000/api"
    api_timeout_seconds: float = 10.0
    refresh_token_path: str = "/users/refresh-token"
    directory_cache_ttl_seconds: int = 300
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost", "http://localhost:3000"])
    log_file_path: str = "logs/permission-activity.log"
    log_to_file: bool = True
    log_to_elasticsearch: bool = False
    elasticsearch_url: str = "http://localhost:9200"
    elasticsearch_index: str = "permission-activity"
    service_token: str | None = None
    orphan_sweep_enabled: bool = False
    orphan_sweep_interval_seconds: int = 300
    orphan_sweep_revoke: bool = False

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator(
        "log_to_file",
        "log_to_elasticsearch",
        "orphan_sweep_enabled",
        "orphan_sweep_revoke",
        mode="before",
    )
    @classmethod
    def parse_bool(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)

    @field_validator("api_base_url", "elasticsearch_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_file_path", mode="after")
    @classmethod
    def ensure_log_path(cls, value: str) -> str:
        path = Path(value)
        if not path.is_absolute():
            path = Path.cwd() / path
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
