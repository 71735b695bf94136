"""OpenTelemetry setup for lookalike-server."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from fastapi import FastAPI
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from lookalike_server.config import Settings


class SimilarityMetrics(Protocol):
    """Similarity request metrics recorder contract."""

    def record(
        self,
        *,
        operation: str,
        status: str,
        image_count: int,
        duration_ms: float,
    ) -> None:
        """Record a single request measurement."""


@dataclass(slots=True)
class NoopSimilarityMetrics:
    """No-op implementation used when telemetry is disabled."""

    def record(
        self,
        *,
        operation: str,
        status: str,
        image_count: int,
        duration_ms: float,
    ) -> None:
        del operation, status, image_count, duration_ms


@dataclass(slots=True)
class OTelSimilarityMetrics:
    """OpenTelemetry-backed metrics recorder."""

    request_counter: object
    images_counter: object
    duration_histogram: object

    def record(
        self,
        *,
        operation: str,
        status: str,
        image_count: int,
        duration_ms: float,
    ) -> None:
        attributes = {"operation": operation, "status": status}
        self.request_counter.add(1, attributes=attributes)
        self.images_counter.add(max(0, image_count), attributes=attributes)
        self.duration_histogram.record(max(0.0, duration_ms), attributes=attributes)


def resolve_otlp_endpoint(endpoint: str, signal: str) -> str:
    """Collector base URL or full signal URL to the OTLP path for ``signal``."""
    path = f"/v1/{signal}"
    cleaned = endpoint.rstrip("/")
    return cleaned if cleaned.endswith(path) else cleaned + path


@dataclass(slots=True)
class TelemetryRuntime:
    """Holds telemetry runtime state for app lifespan."""

    enabled: bool = False
    tracer_provider: TracerProvider | None = None
    meter_provider: MeterProvider | None = None
    instrumentor: FastAPIInstrumentor | None = None
    similarity_metrics: SimilarityMetrics = field(default_factory=NoopSimilarityMetrics)


def setup_telemetry(app: FastAPI, settings: Settings) -> TelemetryRuntime:
    """Initialize OpenTelemetry SDK and FastAPI instrumentation."""
    if not settings.telemetry.enabled:
        return TelemetryRuntime()

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.service_version,
        }
    )
    tracer_provider = TracerProvider(
        resource=resource,
        sampler=TraceIdRatioBased(settings.telemetry.sample_ratio),
    )

    endpoint = settings.telemetry.otlp_endpoint
    exporter_options = {
        "headers": settings.telemetry.otlp_headers or None,
        "timeout": settings.telemetry.otlp_timeout_seconds,
    }
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=resolve_otlp_endpoint(endpoint, "traces"), **exporter_options))
    )
    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=resolve_otlp_endpoint(endpoint, "metrics"), **exporter_options),
        export_interval_millis=settings.telemetry.metrics_export_interval_ms,
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    meter = meter_provider.get_meter("lookalike-server")

    similarity_metrics = OTelSimilarityMetrics(
        request_counter=meter.create_counter(
            name="lookalike_server_requests_total",
            unit="1",
            description="Count of similarity and feature requests by operation and status.",
        ),
        images_counter=meter.create_counter(
            name="lookalike_server_images_total",
            unit="1",
            description="Total number of image sources processed.",
        ),
        duration_histogram=meter.create_histogram(
            name="lookalike_server_request_duration_ms",
            unit="ms",
            description="Latency of similarity and feature requests.",
        ),
    )

    instrumentor = FastAPIInstrumentor()
    instrumentor.instrument_app(
        app,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
    )

    return TelemetryRuntime(
        enabled=True,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        instrumentor=instrumentor,
        similarity_metrics=similarity_metrics,
    )


def shutdown_telemetry(app: FastAPI, runtime: TelemetryRuntime) -> None:
    """Shutdown OpenTelemetry instrumentation/export pipeline."""
    if not runtime.enabled:
        return

    if runtime.instrumentor is not None:
        runtime.instrumentor.uninstrument_app(app)

    if runtime.meter_provider is not None:
        runtime.meter_provider.shutdown()

    if runtime.tracer_provider is not None:
        runtime.tracer_provider.shutdown()
