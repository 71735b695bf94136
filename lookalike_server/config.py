"""Runtime settings for lookalike-server."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8181)


class EmbeddingConfig(BaseModel):
    """Embedding model and compute backend settings."""

    enabled: bool = Field(default=True)
    backend: Literal["deterministic", "mobilenet_v2"] = Field(default="deterministic")
    backend_preference: list[str] = Field(default_factory=lambda: ["cuda", "mps", "cpu"])
    backend_timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)


class ImageConfig(BaseModel):
    """Image source limits."""

    fetch_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    max_image_bytes: int = Field(default=20 * 1024 * 1024, ge=1024, le=200 * 1024 * 1024)


class CorpusConfig(BaseModel):
    """Remote corpus search / grouping service."""

    base_url: str = Field(default="http://127.0.0.1:7001")
    timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)
    default_search_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    default_group_threshold: float = Field(default=0.9, ge=0.0, le=1.0)


class TelemetryConfig(BaseModel):
    """OpenTelemetry configuration."""

    enabled: bool = Field(default=False)
    otlp_endpoint: str = Field(default="http://127.0.0.1:4318")
    otlp_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    metrics_export_interval_ms: int = Field(default=5000, ge=250, le=60000)
    sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    otlp_headers: dict[str, str] = Field(default_factory=dict)


class Settings(BaseSettings):
    """Service settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="LOOKALIKE_SERVER_",
        env_nested_delimiter="__",
    )

    service_name: str = Field(default="lookalike-server")
    service_version: str = Field(default="0.1.0")

    server: ServerConfig = Field(default_factory=ServerConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    corpus: CorpusConfig = Field(default_factory=CorpusConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings cache (test helper)."""
    global _settings
    _settings = None
