"""Metrics exporter for configuration and build information.

Pool metrics are updated by the controller as state changes; this module
adds static information metrics and renders the registry for scraping.
"""

import platform
import sys
import time
from typing import TYPE_CHECKING

from prometheus_client import CONTENT_TYPE_LATEST, Gauge, Info, generate_latest
from prometheus_client.core import REGISTRY

from serverpool.utils.telemetry import get_logger

if TYPE_CHECKING:
    from serverpool.config import Config

logger = get_logger(__name__)

METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST

config_info = Info("serverpool_config", "Configuration information", registry=REGISTRY)

system_info = Info("serverpool_system", "System information", registry=REGISTRY)

startup_time_gauge = Gauge(
    "serverpool_startup_time_seconds",
    "Time taken to reconcile and become ready",
    registry=REGISTRY,
)


def export_config_info(config: "Config") -> None:
    """Export configuration information as metrics.

    Args:
        config: Configuration to export
    """
    config_info.info(
        {
            "environment": config.environment,
            "namespace": config.pool.namespace,
            "provisioner": config.provisioner.backend,
            "capacity_per_instance": str(config.pool.capacity_per_instance),
            "min_instances": str(config.pool.min_instances),
            "max_instances": str(config.pool.max_instances),
            "scale_up_threshold": str(config.pool.scale_up_threshold),
            "scaling_interval_seconds": str(config.pool.scaling_interval_seconds),
        }
    )
    logger.debug("Exported configuration info to metrics")


def export_system_info() -> None:
    """Export interpreter and package version as metrics."""
    from serverpool import __version__

    system_info.info(
        {
            "python_version": sys.version.split()[0],
            "platform": platform.platform(),
            "serverpool_version": __version__,
        }
    )


def record_startup_time(started_at: float) -> float:
    """Record the time elapsed since ``started_at`` (a ``time.perf_counter`` value)."""
    duration = time.perf_counter() - started_at
    startup_time_gauge.set(duration)
    logger.info("Recorded startup time", startup_seconds=round(duration, 3))
    return duration


def get_metrics_text() -> str:
    """Get metrics in Prometheus text format.

    Returns:
        Metrics as text string
    """
    return generate_latest(REGISTRY).decode("utf-8")
