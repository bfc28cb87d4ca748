"""OpenTelemetry providers for the Chronologicon process.

Ingestion emits spans; ``telemetry.metrics`` holds the counters and histograms.
Nothing leaves the process unless ``telemetry_enabled`` is set together with an
OTLP endpoint or the console fallback.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import List, Optional

from opentelemetry import metrics as otel_metrics
from opentelemetry import trace as otel_trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor

from ..config import Settings

__all__ = ["TelemetryProviders", "setup_telemetry", "flush_telemetry"]


@dataclass(frozen=True)
class TelemetryProviders:
    tracer_provider: TracerProvider
    meter_provider: MeterProvider
    exporting: bool


_lock = Lock()
_providers: Optional[TelemetryProviders] = None


def setup_telemetry(settings: Settings) -> TelemetryProviders:
    """Install the global tracer and meter providers.

    OpenTelemetry only accepts one global provider per process, so the first
    call wins and later calls (app reloads in tests) get the same providers.
    """

    global _providers
    with _lock:
        if _providers is not None:
            return _providers

        resource = Resource.create(
            {
                "service.name": settings.telemetry_service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.telemetry_environment,
            }
        )
        tracer_provider = TracerProvider(resource=resource)
        readers: List[MetricReader] = []
        exporting = False

        if settings.telemetry_enabled and settings.telemetry_otlp_endpoint:
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=settings.telemetry_otlp_endpoint,
                        insecure=settings.telemetry_otlp_insecure,
                    )
                )
            )
            readers.append(
                _periodic_reader(
                    OTLPMetricExporter(
                        endpoint=settings.telemetry_otlp_endpoint,
                        insecure=settings.telemetry_otlp_insecure,
                    ),
                    settings,
                )
            )
            exporting = True
        elif settings.telemetry_enabled and settings.telemetry_console_fallback:
            tracer_provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
            readers.append(_periodic_reader(ConsoleMetricExporter(), settings))
            exporting = True

        meter_provider = MeterProvider(resource=resource, metric_readers=readers)
        otel_trace.set_tracer_provider(tracer_provider)
        otel_metrics.set_meter_provider(meter_provider)
        _providers = TelemetryProviders(
            tracer_provider=tracer_provider,
            meter_provider=meter_provider,
            exporting=exporting,
        )
        return _providers


def flush_telemetry(timeout_millis: int = 5000) -> None:
    """Push buffered spans and metrics out; a no-op before setup."""

    providers = _providers
    if providers is None or not providers.exporting:
        return
    providers.tracer_provider.force_flush(timeout_millis)
    providers.meter_provider.force_flush(timeout_millis)


def _periodic_reader(exporter: MetricExporter, settings: Settings) -> PeriodicExportingMetricReader:
    interval_ms = int(settings.telemetry_metrics_interval * 1000)
    return PeriodicExportingMetricReader(exporter=exporter, export_interval_millis=interval_ms)
