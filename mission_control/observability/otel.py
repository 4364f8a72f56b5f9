"""OpenTelemetry + Prometheus fallback wiring for the collector."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from mission_control import config

logger = logging.getLogger("mission_control.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_collector_runs_counter: Any | None = None
_collector_latency_hist: Any | None = None
_ingestion_counter: Any | None = None
_ingestion_latency_hist: Any | None = None
_adapter_warning_counter: Any | None = None
_tool_spans_counter: Any | None = None
_tool_duration_hist: Any | None = None

_prom_enabled = False
_prom_collector_runs_counter: Any | None = None
_prom_collector_latency_hist: Any | None = None
_prom_ingestion_counter: Any | None = None
_prom_ingestion_latency_hist: Any | None = None
_prom_adapter_warning_counter: Any | None = None
_prom_tool_spans_counter: Any | None = None
_prom_tool_duration_hist: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def _start_prometheus() -> None:
    global _prom_enabled
    global _prom_collector_runs_counter, _prom_collector_latency_hist
    global _prom_ingestion_counter, _prom_ingestion_latency_hist, _prom_adapter_warning_counter
    global _prom_tool_spans_counter, _prom_tool_duration_hist

    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
    except (ImportError, OSError) as exc:
        logger.warning("Prometheus fallback not started: %s", exc)
        return

    _prom_collector_runs_counter = Counter(
        "mc_collector_runs_total", "Collector task executions by outcome", ["collector", "result"]
    )
    _prom_collector_latency_hist = Histogram(
        "mc_collector_latency_ms", "Collector task execution latency", ["collector", "result"]
    )
    _prom_ingestion_counter = Counter(
        "mc_ingestion_snapshots_total", "Snapshots ingested by source and outcome", ["source", "result"]
    )
    _prom_ingestion_latency_hist = Histogram(
        "mc_ingestion_latency_ms", "Latency of snapshot ingestion", ["source", "result"]
    )
    _prom_adapter_warning_counter = Counter(
        "mc_adapter_warnings_total", "Adapter warnings converted to events", ["source"]
    )
    _prom_tool_spans_counter = Counter(
        "mc_tool_spans_total", "Tool spans completed in tailed transcripts", ["tool", "status"]
    )
    _prom_tool_duration_hist = Histogram(
        "mc_tool_duration_ms", "Tool span durations from tailed transcripts", ["tool"]
    )
    _prom_enabled = True
    logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _collector_runs_counter, _collector_latency_hist
    global _ingestion_counter, _ingestion_latency_hist, _adapter_warning_counter
    global _tool_spans_counter, _tool_duration_hist

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (MC_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "mission-control-collector"

    resource = Resource.create({"service.name": service_name, "service.namespace": "mission-control"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("mission_control.collector")

    _collector_runs_counter = meter.create_counter(
        "mc_collector_runs_total", unit="1", description="Collector task executions by outcome",
    )
    _collector_latency_hist = meter.create_histogram(
        "mc_collector_latency_ms", unit="ms", description="Collector task execution latency",
    )
    _ingestion_counter = meter.create_counter(
        "mc_ingestion_snapshots_total", unit="1", description="Snapshots ingested by source and outcome",
    )
    _ingestion_latency_hist = meter.create_histogram(
        "mc_ingestion_latency_ms", unit="ms", description="Latency of snapshot ingestion",
    )
    _adapter_warning_counter = meter.create_counter(
        "mc_adapter_warnings_total", unit="1", description="Adapter warnings converted to events",
    )
    _tool_spans_counter = meter.create_counter(
        "mc_tool_spans_total", unit="1", description="Tool spans completed in tailed transcripts",
    )
    _tool_duration_hist = meter.create_histogram(
        "mc_tool_duration_ms", unit="ms", description="Tool span durations from tailed transcripts",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("mission_control.collector")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrumentation failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_collector_run(collector: str, result: str, duration_ms: float) -> None:
    labels = _labels(collector=collector, result=result)
    duration = max(0.0, float(duration_ms))
    if _enabled and _collector_runs_counter is not None:
        _collector_runs_counter.add(1, labels)
    if _enabled and _collector_latency_hist is not None:
        _collector_latency_hist.record(duration, labels)
    if _prom_enabled and _prom_collector_runs_counter is not None:
        _prom_collector_runs_counter.labels(**labels).inc()
    if _prom_enabled and _prom_collector_latency_hist is not None:
        _prom_collector_latency_hist.labels(**labels).observe(duration)


def record_ingestion(source_type: str, result: str, duration_ms: float) -> None:
    labels = _labels(source=source_type, result=result)
    duration = max(0.0, float(duration_ms))
    if _enabled and _ingestion_counter is not None:
        _ingestion_counter.add(1, labels)
    if _enabled and _ingestion_latency_hist is not None:
        _ingestion_latency_hist.record(duration, labels)
    if _prom_enabled and _prom_ingestion_counter is not None:
        _prom_ingestion_counter.labels(**labels).inc()
    if _prom_enabled and _prom_ingestion_latency_hist is not None:
        _prom_ingestion_latency_hist.labels(**labels).observe(duration)


def record_adapter_warning(source_type: str, count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = _labels(source=source_type)
    if _enabled and _adapter_warning_counter is not None:
        _adapter_warning_counter.add(safe_count, labels)
    if _prom_enabled and _prom_adapter_warning_counter is not None:
        _prom_adapter_warning_counter.labels(**labels).inc(safe_count)


def record_tool_span(tool: str, status: str, duration_ms: float | None = None) -> None:
    labels = _labels(tool=tool, status=status)
    if _enabled and _tool_spans_counter is not None:
        _tool_spans_counter.add(1, labels)
    if _enabled and _tool_duration_hist is not None and duration_ms:
        _tool_duration_hist.record(float(duration_ms), _labels(tool=tool))
    if _prom_enabled and _prom_tool_spans_counter is not None:
        _prom_tool_spans_counter.labels(**labels).inc()
    if _prom_enabled and _prom_tool_duration_hist is not None and duration_ms:
        _prom_tool_duration_hist.labels(**_labels(tool=tool)).observe(float(duration_ms))
