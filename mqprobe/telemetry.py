"""OpenTelemetry instrumentation for mqprobe."""

from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from mqprobe.logger import get_logger

logger = get_logger(__name__)

_initialized = False
_tracer: trace.Tracer | None = None
_meter: metrics.Meter | None = None
_phase_histogram: metrics.Histogram | None = None
_merge_latency_histogram: metrics.Histogram | None = None


def init_telemetry(
    endpoint: str,
    service_name: str,
    service_version: str | None = None,
) -> None:
    """Initialize OpenTelemetry tracing and metrics.

    Telemetry stays disabled (no-op tracer, nothing recorded) unless an
    endpoint is given.

    Args:
        endpoint: OTLP endpoint URL (e.g., http://localhost:4318)
        service_name: Service name for telemetry (e.g., "mqprobe")
        service_version: Optional service version
    """
    global _initialized, _tracer, _meter
    global _phase_histogram, _merge_latency_histogram

    if _initialized or not endpoint:
        return

    resource_attrs = {"service.name": service_name}
    if service_version:
        resource_attrs["service.version"] = service_version
    resource = Resource.create(resource_attrs)

    trace_exporter = OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces")
    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(trace_provider)
    _tracer = trace.get_tracer(__name__)

    metric_exporter = OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics")
    metric_reader = PeriodicExportingMetricReader(metric_exporter, export_interval_millis=10000)
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    _meter = metrics.get_meter(__name__)

    _phase_histogram = _meter.create_histogram(
        "mqprobe.phase.duration",
        unit="s",
        description="Wall-clock duration of a scenario phase",
    )
    _merge_latency_histogram = _meter.create_histogram(
        "mqprobe.merge.latency",
        unit="s",
        description="Time from first enqueue until a pull request was observed merged",
    )

    _initialized = True
    version_info = f", version={service_version}" if service_version else ""
    logger.info(
        f"OpenTelemetry initialized: endpoint={endpoint}, service={service_name}{version_info}"
    )


def get_tracer() -> trace.Tracer:
    """Get the global tracer, or a no-op tracer if not initialized."""
    return _tracer or trace.get_tracer(__name__)


def record_phase_duration(seconds: float, scenario: str, phase: str) -> None:
    """Record how long a scenario phase took."""
    if not _initialized or _phase_histogram is None:
        return
    _phase_histogram.record(seconds, {"scenario": scenario, "phase": phase})


def record_merge_latency(seconds: float, scenario: str, pr_number: int, **extra: Any) -> None:
    """Record the observed enqueue-to-merge latency of a pull request."""
    if not _initialized or _merge_latency_histogram is None:
        return
    attributes: dict[str, Any] = {"scenario": scenario, "pr.number": pr_number, **extra}
    _merge_latency_histogram.record(seconds, attributes)


def reset_telemetry() -> None:
    """Reset telemetry module state (for testing only)."""
    global _initialized, _tracer, _meter
    global _phase_histogram, _merge_latency_histogram
    _initialized = False
    _tracer = None
    _meter = None
    _phase_histogram = None
    _merge_latency_histogram = None
