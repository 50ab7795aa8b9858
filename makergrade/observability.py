"""
Observability instrumentation for makergrade.

1. **Structured Logging**
   - JSON lines with trace context correlation (trace_id, span_id)
   - Every ``extra={...}`` field lands in the record
   - Plain text in test mode (TESTING=true) or when LOG_JSON=false

2. **OpenTelemetry Tracing**
   - Job runs and per-item units run inside spans
   - Export via OTLP gRPC only when OTEL_EXPORTER_OTLP_ENDPOINT is set

3. **Prometheus Metrics**
   - Per-item outcome counters, per-run result counters, active worker gauge
   - Exposed over HTTP by ``serve`` when METRICS_PORT is set

Usage:
    from makergrade.observability import setup_observability, tracer

    setup_observability()
    with tracer.start_as_current_span("crawl_job.run") as span:
        span.set_attribute("job.id", job_id)
"""

import logging
import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Gauge, start_http_server
from pythonjsonlogger import jsonlogger

from makergrade.core.config import settings

# =============================================================================
# Logging Configuration
# =============================================================================

# Reserved log record attributes that should not be treated as extra fields
RESERVED_LOG_ATTRS = frozenset({
    "args", "asctime", "created", "exc_info", "exc_text", "filename",
    "funcName", "levelname", "levelno", "lineno", "module", "msecs",
    "message", "msg", "name", "pathname", "process", "processName",
    "relativeCreated", "stack_info", "thread", "threadName", "taskName",
    "trace_id", "span_id", "service",
})


class StructuredJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that includes OpenTelemetry trace context and extra fields.

    Example output:
        {"timestamp": "2025-01-15T10:30:00Z", "level": "INFO",
         "logger": "makergrade.jobs.crawl", "message": "Crawl job completed",
         "service": "makergrade", "trace_id": "abc123...",
         "job_id": "crawl_...", "processed_count": 42}
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs, timestamp=True)
        self.service_name = settings.OTEL_SERVICE_NAME

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = self.service_name

        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            log_record["trace_id"] = format(ctx.trace_id, "032x")
            log_record["span_id"] = format(ctx.span_id, "016x")

        for key, value in record.__dict__.items():
            if key not in RESERVED_LOG_ATTRS and not key.startswith("_"):
                if key not in log_record:
                    log_record[key] = value


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (defaults to settings.LOG_LEVEL)
        json_output: Force JSON or text output (defaults to settings.LOG_JSON,
            always text when TESTING=true)
    """
    is_testing = os.getenv("TESTING", "false").lower() == "true"
    level_value = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    use_json = settings.LOG_JSON if json_output is None else json_output

    if is_testing or not use_json:
        logging.basicConfig(
            level=level_value,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            force=True,
        )
        return

    handler = logging.StreamHandler()
    handler.setLevel(level_value)
    handler.setFormatter(StructuredJsonFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)


# =============================================================================
# OpenTelemetry Tracing Setup
# =============================================================================


def _create_trace_provider() -> TracerProvider:
    """
    Create the TracerProvider.

    Spans are exported over OTLP gRPC when an endpoint is configured. The
    BatchSpanProcessor drops spans if the collector is unreachable, so job
    execution never blocks on tracing.
    """
    resource = Resource(attributes={SERVICE_NAME: settings.OTEL_SERVICE_NAME})
    provider = TracerProvider(resource=resource)

    if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        exporter = OTLPSpanExporter(
            endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))

    return provider


# Module-level tracer; resolves through the global provider once it is set
tracer = trace.get_tracer("makergrade")


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

# Items by pipeline and outcome (processed, failed, discovered)
job_items_total = Counter(
    name="makergrade_job_items_total",
    documentation="Items handled by job pipelines",
    labelnames=["kind", "outcome"],
)

# Job runs by pipeline and how they ended (completed, failed, cancelled)
job_runs_total = Counter(
    name="makergrade_job_runs_total",
    documentation="Job runs finished, by result",
    labelnames=["kind", "result"],
)

# Workers currently inside their loop
active_workers = Gauge(
    name="makergrade_active_workers",
    documentation="Job workers currently running",
    labelnames=["kind"],
)


# =============================================================================
# Setup Function
# =============================================================================

_configured = False


def setup_observability(metrics_port: int | None = None) -> None:
    """
    Configure logging and tracing for the process, and optionally start the
    Prometheus HTTP endpoint.

    Safe to call more than once; only the first call installs the tracer
    provider.

    Args:
        metrics_port: Port for the metrics endpoint (None = not exposed)
    """
    global _configured
    logger = logging.getLogger(__name__)

    configure_logging()

    if not _configured:
        trace.set_tracer_provider(_create_trace_provider())
        _configured = True

    if metrics_port:
        start_http_server(metrics_port)

    logger.info(
        "Observability configured",
        extra={
            "service_name": settings.OTEL_SERVICE_NAME,
            "otlp_endpoint": settings.OTEL_EXPORTER_OTLP_ENDPOINT,
            "metrics_port": metrics_port,
        },
    )
