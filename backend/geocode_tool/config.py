"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - get_settings() is cached (lru_cache) — single instance per process
    - Nested sections map to env vars with "__" (SERVER__PORT=8080)
    - api_prefix always starts with "/" and never ends with one

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Settings.get("server:port") mirrors the colon-path keys the deployment
      config has always used, so ops scripts keep working unchanged
"""

from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseModel):
    """Listening socket and worker process settings."""
    hostname: str = "127.0.0.1"
    port: int = Field(3000, ge=0, le=65535)
    workers: int = Field(1, ge=1)
    # Hard deadline between a fatal fault and forced process exit
    shutdown_timeout_seconds: float = Field(5.0, gt=0)
    body_limit_bytes: int = Field(100_000_000, gt=0)


class GeocoderSettings(BaseModel):
    """Upstream geocoding provider (Yandex HTTP Geocoder compatible)."""
    base_url: str = "https://geocode-maps.yandex.ru/1.x/"
    api_key: str = ""
    lang: str = "ru_RU"
    timeout_seconds: float = 10.0
    max_retries: int = Field(3, ge=0)
    base_delay_ms: int = 200
    max_delay_ms: int = 5_000
    concurrency: int = Field(8, ge=1)


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_nested_delimiter="__", case_sensitive=False,
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    geocoder: GeocoderSettings = Field(default_factory=GeocoderSettings)

    # API
    api_prefix: str = "/geocode-tool/api/v1"

    @field_validator("api_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        v = "/" + v.strip().strip("/")
        if v == "/":
            raise ValueError("api_prefix cannot be the root path")
        return v

    # Front-end build
    static_dir: str = "public"

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve a colon-separated key, e.g. ``settings.get("server:port")``."""
        node: Any = self
        for part in key.split(":"):
            if isinstance(node, BaseModel) and part in type(node).model_fields:
                node = getattr(node, part)
            elif isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node


@lru_cache
def get_settings() -> Settings:
    return Settings()
