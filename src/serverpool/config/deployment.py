"""Deployment configuration and health checks.

This module provides health check functionality backing the ``/health``,
``/ready`` and ``/live`` endpoints, plus graceful shutdown coordination.
"""

import asyncio
import time
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import psutil
from pydantic import BaseModel

from serverpool.utils.telemetry import get_logger

if TYPE_CHECKING:
    from serverpool.core.controller import PoolController

logger = get_logger(__name__)


class HealthCheckConfig(BaseModel):
    """Configuration for health checks."""

    enabled: bool = True
    timeout_seconds: float = 5.0

    check_controller: bool = True
    check_memory_usage: bool = True
    require_running_instance: bool = False

    max_memory_usage_percent: float = 90.0
    max_response_time_ms: float = 1000.0


@dataclass
class HealthStatus:
    """Health check status."""

    healthy: bool
    ready: bool
    checks: dict[str, Any]
    timestamp: float
    response_time_ms: float


class HealthChecker:
    """Health check implementation.

    Health covers the process itself (controller alive, memory within
    limits). Readiness additionally requires that startup reconciliation
    has completed.
    """

    def __init__(
        self, config: HealthCheckConfig, controller: "PoolController | None" = None
    ):
        self.config = config
        self.controller = controller
        self._check_lock = asyncio.Lock()

    async def check_health(self) -> HealthStatus:
        """Perform comprehensive health check.

        Returns:
            Health status with detailed check results
        """
        start_time = time.time()

        async with self._check_lock:
            checks: dict[str, Any] = {}
            healthy = True
            ready = True

            if self.config.check_controller:
                controller_healthy, controller_ready, details = self._check_controller()
                checks["controller"] = {
                    "healthy": controller_healthy,
                    "ready": controller_ready,
                    **details,
                }
                if not controller_healthy:
                    healthy = False
                if not controller_ready:
                    ready = False

            if self.config.check_memory_usage:
                memory_ok, memory_info = self._check_memory()
                checks["memory"] = {"healthy": memory_ok, **memory_info}
                if not memory_ok:
                    healthy = False

            response_time_ms = (time.time() - start_time) * 1000
            checks["response_time"] = {
                "healthy": response_time_ms <= self.config.max_response_time_ms,
                "response_time_ms": response_time_ms,
            }
            if response_time_ms > self.config.max_response_time_ms:
                healthy = False

            return HealthStatus(
                healthy=healthy,
                ready=ready and healthy,
                checks=checks,
                timestamp=time.time(),
                response_time_ms=response_time_ms,
            )

    def _check_controller(self) -> tuple[bool, bool, dict[str, Any]]:
        """Check controller health and readiness.

        Returns:
            Tuple of (healthy, ready, details)
        """
        if self.controller is None:
            return False, False, {"error": "controller not attached"}

        stats = self.controller.stats()
        ready = bool(stats["ready"])
        if self.config.require_running_instance and stats["instances"]["running"] == 0:
            ready = False
        return True, ready, stats

    def _check_memory(self) -> tuple[bool, dict[str, Any]]:
        """Check memory usage.

        Returns:
            Tuple of (within_limits, memory_info)
        """
        try:
            process = psutil.Process()
            memory_info = process.memory_info()
            memory_percent = process.memory_percent()
        except psutil.Error as e:
            logger.warning("Memory check failed", error=str(e))
            return False, {"error": str(e)}

        return memory_percent < self.config.max_memory_usage_percent, {
            "usage_percent": memory_percent,
            "rss_mb": memory_info.rss / 1024 / 1024,
            "threshold_percent": self.config.max_memory_usage_percent,
        }


class GracefulShutdownHandler:
    """Runs registered shutdown coroutines with a shared deadline."""

    def __init__(self, timeout_seconds: float = 30.0):
        self.timeout_seconds = timeout_seconds
        self._shutdown_coros: list[Coroutine[Any, Any, Any]] = []

    def register_shutdown_task(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Register a coroutine to run during shutdown."""
        self._shutdown_coros.append(coro)

    async def shutdown(self) -> None:
        """Perform graceful shutdown."""
        logger.info("Starting graceful shutdown")

        tasks = [asyncio.create_task(coro) for coro in self._shutdown_coros]
        self._shutdown_coros.clear()
        if tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*tasks, return_exceptions=True),
                    timeout=self.timeout_seconds,
                )
                logger.info("All shutdown tasks completed")
            except TimeoutError:
                logger.warning(
                    "Shutdown timeout exceeded", timeout_seconds=self.timeout_seconds
                )

        logger.info("Graceful shutdown completed")
