"""Tests for the telemetry module."""

from unittest.mock import MagicMock, patch

import pytest

from mqprobe import telemetry


@pytest.fixture(autouse=True)
def reset():
    """Reset telemetry state around each test."""
    telemetry.reset_telemetry()
    yield
    telemetry.reset_telemetry()


@pytest.mark.unit
class TestInitTelemetry:
    """Unit tests for init_telemetry."""

    def test_no_endpoint_is_noop(self):
        """Test telemetry stays disabled without an endpoint."""
        telemetry.init_telemetry("", "mqprobe")

        assert telemetry._initialized is False

    def test_records_are_noops_when_disabled(self):
        """Test recording without initialization does nothing and does not fail."""
        telemetry.record_phase_duration(1.5, "mutated-main", "cleanup")
        telemetry.record_merge_latency(30.0, "mutated-main", 1)

    def test_get_tracer_without_init(self):
        """Test a usable tracer is returned even when disabled."""
        tracer = telemetry.get_tracer()

        with tracer.start_as_current_span("scenario.cleanup"):
            pass

    def test_init_with_endpoint_configures_exporters(self):
        """Test providers and histograms are created when an endpoint is set."""
        with (
            patch.object(telemetry, "OTLPSpanExporter") as span_exporter,
            patch.object(telemetry, "OTLPMetricExporter") as metric_exporter,
            patch.object(telemetry, "PeriodicExportingMetricReader"),
            patch.object(telemetry, "MeterProvider"),
            patch.object(telemetry.trace, "set_tracer_provider"),
            patch.object(telemetry.metrics, "set_meter_provider"),
            patch.object(telemetry.metrics, "get_meter") as get_meter,
        ):
            meter = MagicMock()
            get_meter.return_value = meter

            telemetry.init_telemetry("http://localhost:4318", "mqprobe", "0.1.0")

        span_exporter.assert_called_once_with(endpoint="http://localhost:4318/v1/traces")
        metric_exporter.assert_called_once_with(endpoint="http://localhost:4318/v1/metrics")
        assert meter.create_histogram.call_count == 2
        assert telemetry._initialized is True

    def test_record_phase_duration_when_initialized(self):
        """Test phase durations are recorded with scenario and phase attributes."""
        histogram = MagicMock()
        telemetry._initialized = True
        telemetry._phase_histogram = histogram

        telemetry.record_phase_duration(2.0, "mid-queue-conflicts", "observe")

        histogram.record.assert_called_once_with(
            2.0, {"scenario": "mid-queue-conflicts", "phase": "observe"}
        )

    def test_record_merge_latency_when_initialized(self):
        """Test merge latency carries the PR number and extra attributes."""
        histogram = MagicMock()
        telemetry._initialized = True
        telemetry._merge_latency_histogram = histogram

        telemetry.record_merge_latency(40.0, "scenario", 7, ordering="fifo")

        histogram.record.assert_called_once_with(
            40.0, {"scenario": "scenario", "pr.number": 7, "ordering": "fifo"}
        )
