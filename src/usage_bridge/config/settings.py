"""Application settings and configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TrackedResource(BaseModel):
    """A service label the bridge reports usage for."""

    plans: list[str] = Field(default_factory=list, description="Tracked plan names")
    guid: str | None = Field(default=None, description="Platform GUID of the service")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Bridge
    bridge_type: Literal["services", "applications"] = Field(
        default="services",
        description="Which usage event stream this bridge relays",
    )

    # Platform endpoints
    cf_api_url: str = Field(
        default="http://localhost:9000",
        description="Cloud Controller API URL",
    )
    auth_server_url: str = Field(
        default="http://localhost:9882",
        description="UAA / OAuth authorization server URL",
    )
    collector_url: str = Field(
        default="http://localhost:9080",
        description="Usage collector URL",
    )

    # Credentials
    cf_client_id: str = Field(
        default="",
        description="Client ID with Cloud Controller admin read access",
    )
    cf_client_secret: str = Field(
        default="",
        description="Client secret for the Cloud Controller client",
    )
    client_id: str = Field(
        default="",
        description="Client ID used to write usage to the collector",
    )
    client_secret: str = Field(
        default="",
        description="Client secret used to write usage to the collector",
    )

    # Security of the collector and of the stats endpoint
    secured: bool = Field(
        default=False,
        description="Require tokens for the collector and the stats endpoint",
    )
    jwtkey: str | None = Field(
        default=None,
        description="Key used to verify bearer tokens on the stats endpoint",
    )
    jwtalgo: str | None = Field(
        default=None,
        description="Algorithm used to verify bearer tokens on the stats endpoint",
    )

    # Polling (milliseconds, as the platform reports them)
    min_interval_time: int = Field(
        default=5000,
        description="Delay between successful polling passes (ms)",
    )
    max_interval_time: int = Field(
        default=240000,
        description="Upper bound of the backoff delay after failures (ms)",
    )
    guid_min_age: int = Field(
        default=60000,
        description="Minimum age of an event before it is processed (ms)",
    )
    last_recorded_guid: str | None = Field(
        default=None,
        description="Event GUID to resume from when no checkpoint is stored",
    )
    orgs_to_report: list[str] | None = Field(
        default=None,
        description="Organization GUIDs to report; all organizations when unset",
    )
    services: dict[str, TrackedResource] | None = Field(
        default=None,
        description="Tracked services: label -> {plans, guid}",
    )

    # Storage
    store_backend: Literal["database", "memory"] = Field(
        default="database",
        description="Where checkpoint and carry-over documents are kept",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./usage_bridge.db",
        description="Database connection URL",
    )
    database_pool_size: int = Field(
        default=5,
        description="Connection pool size (ignored for SQLite)",
    )
    database_pool_max_overflow: int = Field(
        default=10,
        description="Connection pool overflow (ignored for SQLite)",
    )
    progress_document_id: str | None = Field(
        default=None,
        description="Checkpoint document ID (defaults per bridge type)",
    )
    carry_over_retention_seconds: int = Field(
        default=86400,
        description="How long carry-over entries are kept",
    )

    # Resilience
    startup_retry_interval_seconds: float = Field(
        default=5.0,
        description="Wait between startup retries (tokens, service GUIDs)",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for outgoing HTTP requests",
    )

    # Server
    bridge_host: str = Field(
        default="0.0.0.0",
        description="Server host",
    )
    bridge_port: int = Field(
        default=9500,
        description="Server port",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log format",
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # OpenTelemetry Configuration
    otel_enabled: bool = Field(
        default=False,
        description="Enable OpenTelemetry tracing",
    )
    otel_service_name: str = Field(
        default="usage_bridge",
        description="Service name for OpenTelemetry traces",
    )
    otel_exporter_otlp_endpoint: str = Field(
        default="http://localhost:4317",
        description="OTLP exporter endpoint (gRPC)",
    )
    otel_exporter_otlp_http_endpoint: str = Field(
        default="http://localhost:4318",
        description="OTLP exporter endpoint (HTTP)",
    )
    otel_exporter_type: Literal["otlp", "otlp-http", "console"] = Field(
        default="otlp",
        description="Telemetry exporter type",
    )
    otel_traces_sampler: Literal["always_on", "always_off", "traceidratio", "parentbased_always_on", "parentbased_always_off", "parentbased_traceidratio"] = Field(
        default="always_on",
        description="Trace sampling strategy",
    )
    otel_traces_sampler_arg: float = Field(
        default=1.0,
        description="Sampler argument (e.g., ratio for traceidratio)",
    )

    @field_validator("min_interval_time", "max_interval_time", "guid_min_age")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("intervals must not be negative")
        return value

    @property
    def resolved_progress_document_id(self) -> str:
        """Checkpoint document ID for this bridge type."""
        if self.progress_document_id:
            return self.progress_document_id
        if self.bridge_type == "applications":
            return "abacus-cf-bridge-cache"
        return "abacus-cf-services-cache"

    def public_view(self) -> dict:
        """Settings safe to expose on the stats endpoint."""
        return {
            "bridge_type": self.bridge_type,
            "secured": self.secured,
            "min_interval_time": self.min_interval_time,
            "max_interval_time": self.max_interval_time,
            "guid_min_age": self.guid_min_age,
            "orgs_to_report": self.orgs_to_report,
            "services": (
                {label: r.model_dump() for label, r in self.services.items()}
                if self.services
                else None
            ),
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
