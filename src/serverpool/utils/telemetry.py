"""Telemetry utilities for logging, metrics, and tracing.

This module provides centralized observability infrastructure including:
- Structured logging with optional PII redaction
- Prometheus metrics for pool size, bound players and placement outcomes
- OpenTelemetry tracing setup
- Performance measurement for scaling ticks and provisioner calls
"""

import asyncio
import logging
import re
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import Counter, Gauge, Histogram
from structlog.processors import JSONRenderer

# Prometheus metrics
RUNNING_INSTANCES_GAUGE = Gauge(
    "serverpool_running_instances",
    "Number of game server instances in running state",
)

STARTING_INSTANCES_GAUGE = Gauge(
    "serverpool_starting_instances",
    "Number of game server instances still starting",
)

BOUND_PLAYERS_GAUGE = Gauge(
    "serverpool_bound_players",
    "Total number of players bound to running instances",
)

PLACEMENT_REQUESTS = Counter(
    "serverpool_placement_requests_total",
    "Placement requests by outcome",
    ["outcome"],
)

PROVISIONER_OPERATIONS = Counter(
    "serverpool_provisioner_operations_total",
    "Provisioner calls by operation and status",
    ["operation", "status"],
)

SCALING_ACTIONS = Counter(
    "serverpool_scaling_actions_total",
    "Scaling actions issued by the control loop",
    ["action"],
)

OPERATION_LATENCY = Histogram(
    "serverpool_operation_duration_seconds",
    "Operation latency in seconds",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

SCALING_TICK_DURATION = Histogram(
    "serverpool_scaling_tick_duration_seconds",
    "Duration of one scaling tick in seconds",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0],
)

# PII patterns for redaction
PII_PATTERNS = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"),
    "token": re.compile(r"\b[A-Za-z0-9]{32,}\b"),
}


def redact_pii(text: Any) -> Any:
    """Redact personally identifiable information from text.

    Args:
        text: Input text that may contain PII

    Returns:
        Text with PII patterns replaced with [REDACTED_<type>], or original input if not a string

    Example:
        >>> redact_pii("player alice@example.com joined")
        'player [REDACTED_EMAIL] joined'
    """
    if not isinstance(text, str):
        return text

    result = text
    for pii_type, pattern in PII_PATTERNS.items():
        result = pattern.sub(f"[REDACTED_{pii_type.upper()}]", result)
    return result


def pii_redaction_processor(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor to redact PII from log events."""

    def redact_value(value: Any) -> Any:
        if isinstance(value, str):
            return redact_pii(value)
        elif isinstance(value, dict):
            return {k: redact_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [redact_value(item) for item in value]
        return value

    return {key: redact_value(value) for key, value in event_dict.items()}


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    enable_pii_redaction: bool = False,
) -> None:
    """Initialize structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Output format, "json" or "text"
        enable_pii_redaction: Whether to enable PII redaction processor
    """
    logging.basicConfig(level=getattr(logging, log_level.upper(), logging.INFO))

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if enable_pii_redaction:
        processors.append(pii_redaction_processor)

    if log_format == "text":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_tracing(
    service_name: str = "serverpool",
    otlp_endpoint: str | None = None,
    app: Any = None,
) -> None:
    """Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP endpoint URL (if None, uses console exporter)
        app: FastAPI application to instrument, if any
    """
    from serverpool import __version__

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    exporter: OTLPSpanExporter | ConsoleSpanExporter
    if otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()

    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    if app is not None:
        try:
            FastAPIInstrumentor.instrument_app(app)
        except Exception as e:
            get_logger("serverpool.telemetry").warning(
                "Failed to instrument FastAPI", error=str(e)
            )


def get_tracer(name: str) -> trace.Tracer:
    """Get OpenTelemetry tracer for a component."""
    return trace.get_tracer(name)


def get_logger(name: str, **context: Any) -> Any:
    """Get a structured logger with optional context.

    Args:
        name: Logger name
        **context: Additional context to bind to logger

    Returns:
        Bound logger with context
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


def log_operation(
    logger: Any,
    operation: str,
    status: str = "success",
    server_id: str | None = None,
    player_id: str | None = None,
    latency_ms: float | None = None,
    **extra_context: Any,
) -> None:
    """Log an operation with standardized fields for observability.

    Args:
        logger: Structured logger instance
        operation: Operation name
        status: Operation status (success, error, warning)
        server_id: Server instance identifier
        player_id: Player identifier
        latency_ms: Operation latency in milliseconds
        **extra_context: Additional context fields
    """
    log_data = {
        "operation": operation,
        "status": status,
        **extra_context,
    }

    if server_id is not None:
        log_data["server_id"] = server_id
    if player_id is not None:
        log_data["player_id"] = player_id
    if latency_ms is not None:
        log_data["latency_ms"] = latency_ms

    log_data["monotonic_time"] = MonotonicClock.now()

    if status == "error":
        logger.error("Operation completed", **log_data)
    elif status == "warning":
        logger.warning("Operation completed", **log_data)
    else:
        logger.debug("Operation completed", **log_data)


class PerformanceTimer:
    """Records latency, logs timing and holds the tracing span of one operation."""

    def __init__(
        self,
        operation: str,
        server_id: str | None = None,
        logger: structlog.BoundLogger | None = None,
        record_metrics: bool = True,
        create_span: bool = True,
        tracer_name: str = "serverpool.performance",
    ):
        self.operation = operation
        self.server_id = server_id
        self.logger = logger or get_logger("serverpool.performance")
        self.record_metrics = record_metrics
        self.create_span = create_span
        self.tracer = get_tracer(tracer_name) if create_span else None
        self.span: trace.Span | None = None
        self.start_time: float | None = None
        self.end_time: float | None = None

    def _finish(self, error: BaseException | None) -> None:
        self.end_time = time.perf_counter()
        duration = self.end_time - (self.start_time or self.end_time)
        status = "error" if error is not None else "success"

        if self.record_metrics:
            OPERATION_LATENCY.labels(operation=self.operation).observe(duration)

        if self.span:
            self.span.set_attribute("duration_seconds", duration)
            self.span.set_attribute("status", status)
            if error is not None:
                self.span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))
                self.span.record_exception(error)
            else:
                self.span.set_status(trace.Status(trace.StatusCode.OK))
            self.span.end()

        log_operation(
            self.logger,
            self.operation,
            status=status,
            server_id=self.server_id,
            latency_ms=duration * 1000,
        )

    @property
    def duration(self) -> float | None:
        """Get operation duration in seconds."""
        if self.start_time is not None and self.end_time is not None:
            return self.end_time - self.start_time
        return None


@asynccontextmanager
async def async_performance_timer(
    operation: str,
    server_id: str | None = None,
    logger: structlog.BoundLogger | None = None,
    record_metrics: bool = True,
    create_span: bool = True,
    tracer_name: str = "serverpool.performance",
) -> AsyncGenerator[PerformanceTimer, None]:
    """Async context manager for measuring operation performance.

    Args:
        operation: Operation name for metrics/logging
        server_id: Server instance identifier (optional)
        logger: Logger instance (optional)
        record_metrics: Whether to record Prometheus metrics
        create_span: Whether to create tracing span
        tracer_name: Tracer name for spans

    Yields:
        PerformanceTimer instance
    """
    timer = PerformanceTimer(
        operation=operation,
        server_id=server_id,
        logger=logger,
        record_metrics=record_metrics,
        create_span=create_span,
        tracer_name=tracer_name,
    )

    timer.start_time = time.perf_counter()

    if create_span and timer.tracer:
        timer.span = timer.tracer.start_span(operation)
        if server_id:
            timer.span.set_attribute("server_id", server_id)

    try:
        yield timer
    except BaseException as e:
        timer._finish(e)
        raise
    else:
        timer._finish(None)


def record_placement_outcome(outcome: str) -> None:
    """Record a placement request outcome.

    Args:
        outcome: One of success, no_capacity, error
    """
    PLACEMENT_REQUESTS.labels(outcome=outcome).inc()


def record_provisioner_operation(operation: str, status: str) -> None:
    """Record a provisioner call.

    Args:
        operation: create, delete, describe or list
        status: success or error
    """
    PROVISIONER_OPERATIONS.labels(operation=operation, status=status).inc()


def record_scaling_action(action: str) -> None:
    """Record a scaling decision (scale_up, scale_down, top_up)."""
    SCALING_ACTIONS.labels(action=action).inc()


def record_tick_duration(duration_seconds: float) -> None:
    SCALING_TICK_DURATION.observe(duration_seconds)


def update_pool_gauges(running: int, starting: int, bound_players: int) -> None:
    """Update the pool size and bound player gauges.

    Args:
        running: Number of running instances
        starting: Number of starting instances
        bound_players: Total players bound to running instances
    """
    RUNNING_INSTANCES_GAUGE.set(running)
    STARTING_INSTANCES_GAUGE.set(starting)
    BOUND_PLAYERS_GAUGE.set(bound_players)


class MonotonicClock:
    """Monotonic clock for internal timing measurements.

    Uses asyncio event loop's monotonic time for consistent timing
    that's not affected by system clock adjustments.
    """

    @staticmethod
    def now() -> float:
        """Get current monotonic time in seconds."""
        try:
            loop = asyncio.get_running_loop()
            return loop.time()
        except RuntimeError:
            # No event loop running, fall back to time.monotonic()
            return time.monotonic()
