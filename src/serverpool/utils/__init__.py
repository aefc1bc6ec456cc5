# Shared utilities and helpers

from .errors import (
    AlreadyBoundError,
    DiscoveryError,
    NoCapacityError,
    PoolError,
    ProvisionerUnavailableError,
    RecoveryAction,
    UnknownInstanceError,
)
from .telemetry import (
    MonotonicClock,
    PerformanceTimer,
    async_performance_timer,
    get_logger,
    get_tracer,
    log_operation,
    setup_logging,
    setup_tracing,
)

__all__ = [
    "AlreadyBoundError",
    "DiscoveryError",
    "MonotonicClock",
    "NoCapacityError",
    "PerformanceTimer",
    "PoolError",
    "ProvisionerUnavailableError",
    "RecoveryAction",
    "UnknownInstanceError",
    "async_performance_timer",
    "get_logger",
    "get_tracer",
    "log_operation",
    "setup_logging",
    "setup_tracing",
]
