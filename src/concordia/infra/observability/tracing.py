"""OpenTelemetry tracing configuration.

This module provides environment-aware tracing with:
- Configurable exporters (OTLP, Console, None)
- Ratio-based sampling
- Service resource attributes (name, version)
- Graceful startup and shutdown

The account service creates its spans through the OpenTelemetry API; they
are no-ops until :func:`configure_tracing` installs an SDK provider.

Usage:
    from concordia.infra.observability.tracing import configure_tracing, shutdown_tracing
    configure_tracing()
    ...
    shutdown_tracing()
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Module-level variable for TracerProvider reference (needed for shutdown)
_tracer_provider: TracerProvider | None = None


class TracingSettings(BaseSettings):
    """OpenTelemetry tracing configuration from environment variables.

    Loads configuration from environment variables:
    - OTEL_SERVICE_NAME: Service name for traces (default: concordia)
    - OTEL_SERVICE_VERSION: Service version (default: unknown)
    - OTEL_EXPORTER_TYPE: Exporter type - otlp, console, none (default: none)
    - OTEL_EXPORTER_OTLP_ENDPOINT: OTLP collector endpoint
    - OTEL_EXPORTER_OTLP_HEADERS: Auth headers as key1=val1,key2=val2
    - OTEL_TRACE_SAMPLE_RATE: Fraction of root traces sampled (default: 1.0)

    Example:
        >>> TracingSettings().is_enabled
        False
        >>> TracingSettings(exporter_type="console").is_enabled
        True
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    service_name: str = Field(
        default="concordia",
        alias="OTEL_SERVICE_NAME",
        description="Service name for trace resource attributes",
    )
    service_version: str = Field(
        default="unknown",
        alias="OTEL_SERVICE_VERSION",
        description="Service version for trace resource attributes",
    )
    exporter_type: str = Field(
        default="none",
        alias="OTEL_EXPORTER_TYPE",
        description="Exporter type: otlp, console, none",
    )
    otlp_endpoint: str = Field(
        default="http://localhost:4317",
        alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="OTLP collector gRPC endpoint",
    )
    otlp_headers: str = Field(
        default="",
        alias="OTEL_EXPORTER_OTLP_HEADERS",
        description="OTLP auth headers as key1=val1,key2=val2",
    )
    sample_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        alias="OTEL_TRACE_SAMPLE_RATE",
        description="Fraction of root traces sampled",
    )

    @field_validator("exporter_type", mode="before")
    @classmethod
    def normalize_exporter_type(cls, v: Any) -> str:
        if isinstance(v, str):
            return v.lower()
        return str(v)

    @field_validator("exporter_type")
    @classmethod
    def validate_exporter_type(cls, v: str) -> str:
        """Validate exporter type is a known type.

        Raises:
            ValueError: If exporter type is not valid.
        """
        valid_types = {"otlp", "console", "none"}
        if v not in valid_types:
            msg = f"exporter_type must be one of {valid_types}"
            raise ValueError(msg)
        return v

    @property
    def is_enabled(self) -> bool:
        return self.exporter_type != "none"

    @property
    def otlp_headers_dict(self) -> dict[str, str]:
        """Parse OTLP headers from comma-separated key=value pairs.

        Example:
            >>> TracingSettings(otlp_headers="key1=val1,key2=val2").otlp_headers_dict
            {'key1': 'val1', 'key2': 'val2'}
        """
        if not self.otlp_headers:
            return {}
        result: dict[str, str] = {}
        for pair in self.otlp_headers.split(","):
            if "=" in pair:
                # Split on first = only to handle values with = in them
                key, value = pair.split("=", 1)
                result[key.strip()] = value.strip()
        return result


@lru_cache(maxsize=1)
def get_tracing_settings() -> TracingSettings:
    """Get cached TracingSettings instance.

    Clear cache with ``get_tracing_settings.cache_clear()`` for testing.
    """
    return TracingSettings()


def _create_exporter(settings: TracingSettings) -> SpanExporter:
    """Create span exporter based on settings.

    Raises:
        ValueError: If exporter_type is not recognized.
    """
    if settings.exporter_type == "otlp":
        # Shipped in the ``otlp`` extra.
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[import-not-found]
            OTLPSpanExporter,
        )

        return OTLPSpanExporter(  # type: ignore[no-any-return]
            endpoint=settings.otlp_endpoint,
            headers=settings.otlp_headers_dict or None,
        )
    if settings.exporter_type == "console":
        return ConsoleSpanExporter()
    msg = f"Unknown exporter type: {settings.exporter_type}"
    raise ValueError(msg)


def configure_tracing(settings: TracingSettings | None = None) -> None:
    """Install an OpenTelemetry SDK TracerProvider.

    Initializes:
    - TracerProvider with service resource attributes and a parent-based
      ratio sampler
    - BatchSpanProcessor for async span export
    - Configured exporter (OTLP or Console)

    Should be called once during startup, after configure_logging().
    When exporter_type is "none", returns without touching the global
    provider.

    Args:
        settings: Optional TracingSettings. If None, loads from environment.
    """
    global _tracer_provider

    if settings is None:
        settings = get_tracing_settings()

    if not settings.is_enabled:
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.service_version,
        }
    )
    provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.sample_rate)),
    )
    provider.add_span_processor(BatchSpanProcessor(_create_exporter(settings)))
    trace.set_tracer_provider(provider)
    _tracer_provider = provider


def shutdown_tracing() -> None:
    """Flush pending spans and shut down the TracerProvider.

    Safe to call multiple times.
    """
    global _tracer_provider

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        _tracer_provider = None
