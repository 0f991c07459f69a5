"""Application settings using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Database
    database_url: str | None = None

    # Session management
    session_secret: str = Field(
        default="dev-session-secret-change-in-production",
        description="Secret key for signing session cookies",
    )

    # OpenTelemetry
    otel_enabled: bool = Field(
        default=False,
        description="Enable OpenTelemetry traces and metrics export",
    )
    otel_service_name: str = Field(
        default="schemalens",
        description="Base service name reported to the OTLP collector",
    )
    otel_exporter_otlp_endpoint: str = Field(
        default="http://localhost:4317",
        description="OTLP gRPC endpoint",
    )
    otel_traces_sampler: str = Field(
        default="parentbased_traceidratio",
        description="Sampler: always_on, always_off, traceidratio, parentbased_traceidratio",
    )
    otel_traces_sampler_arg: float = Field(
        default=1.0,
        description="Sampling ratio for ratio-based samplers",
    )

    # Logical FK detection scheduling
    detection_interval_minutes: int = Field(
        default=15,
        description="How often the worker checks projects for stale detection results",
    )


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
