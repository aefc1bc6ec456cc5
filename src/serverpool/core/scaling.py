"""Periodic load-driven scaling of the server pool."""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from serverpool.schemas.types import InstanceStatus, ServerInstance
from serverpool.utils.errors import ProvisionerUnavailableError
from serverpool.utils.telemetry import (
    async_performance_timer,
    get_logger,
    record_scaling_action,
    record_tick_duration,
)

if TYPE_CHECKING:
    from serverpool.core.controller import PoolConfig, PoolController


@dataclass
class ScalingDecision:
    """What one tick should do, computed from a registry snapshot."""

    running_instances: int
    starting_instances: int
    total_players: int
    average_load: float
    scale_up: bool = False
    remove_id: str | None = None


@dataclass
class TickResult:
    """Outcome of one scaling tick."""

    running_instances: int = 0
    total_players: int = 0
    average_load: float = 0.0
    settled: int = 0
    created: str | None = None
    deleted: str | None = None
    errors: list[str] = field(default_factory=list)


def plan_scaling(
    instances: Iterable[ServerInstance],
    config: "PoolConfig",
    pending_creates: int = 0,
) -> ScalingDecision:
    """Decide on at most one scale-up and at most one scale-down.

    Only running instances count toward load and toward ``max_instances``.
    With ``count_starting_toward_max`` enabled, instances still starting and
    creates still in flight count toward the ceiling as well.

    Args:
        instances: Registry snapshot in insertion order
        config: Pool configuration with thresholds and bounds
        pending_creates: Create calls accepted but not yet registered

    Returns:
        ScalingDecision for this tick
    """
    snapshot = list(instances)
    running = [i for i in snapshot if i.status == InstanceStatus.RUNNING]
    starting = sum(1 for i in snapshot if i.status == InstanceStatus.STARTING)
    total_players = sum(i.player_count for i in running)
    average = total_players / len(running) if running else 0.0

    decision = ScalingDecision(
        running_instances=len(running),
        starting_instances=starting,
        total_players=total_players,
        average_load=average,
    )

    high_load = average > config.scale_up_threshold * config.capacity_per_instance
    if high_load and len(running) < config.max_instances:
        decision.scale_up = True
        if config.count_starting_toward_max:
            provisioned = len(running) + starting + pending_creates
            decision.scale_up = provisioned < config.max_instances

    idle = [i for i in running if i.player_count == 0]
    if (
        len(idle) > config.scale_down_idle_threshold
        and len(running) > config.min_instances
    ):
        decision.remove_id = idle[0].id

    return decision


class ScalingController:
    """Runs the scaling tick on a fixed interval.

    The loop waits on a stop event between ticks, so ``stop`` takes effect
    without waiting out a full interval. A tick in progress always runs to
    completion unless the shutdown timeout expires.
    """

    def __init__(
        self, controller: "PoolController", interval_seconds: float | None = None
    ):
        self.controller = controller
        self.interval_seconds = interval_seconds
        self.last_result: TickResult | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._logger = get_logger("serverpool.scaling")

    @property
    def interval(self) -> float:
        if self.interval_seconds is not None:
            return self.interval_seconds
        return self.controller.config.scaling_interval_seconds

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> TickResult:
        """Run one scaling evaluation.

        Provisioner failures are logged and collected in the result; they
        never abort the tick or the loop.
        """
        controller = self.controller
        result = TickResult()

        async with async_performance_timer(
            "scaling.tick", logger=self._logger, create_span=True
        ) as timer:
            result.settled = await controller.refresh_readiness()

            async with controller.lock:
                decision = plan_scaling(
                    controller.registry.list(),
                    controller.config,
                    controller.pending_creates,
                )

            result.running_instances = decision.running_instances
            result.total_players = decision.total_players
            result.average_load = decision.average_load

            self._logger.debug(
                "Server stats",
                running_instances=decision.running_instances,
                starting_instances=decision.starting_instances,
                total_players=decision.total_players,
                average_load=round(decision.average_load, 2),
            )

            if decision.scale_up:
                self._logger.info(
                    "Scaling up: high server load detected",
                    average_load=round(decision.average_load, 2),
                )
                record_scaling_action("scale_up")
                try:
                    instance = await controller.provision_instance(reason="scale_up")
                    result.created = instance.id
                except ProvisionerUnavailableError as e:
                    result.errors.append(str(e))

            if decision.remove_id is not None:
                self._logger.info(
                    "Scaling down: removing idle server", server_id=decision.remove_id
                )
                record_scaling_action("scale_down")
                try:
                    await controller.decommission_instance(
                        decision.remove_id, reason="scale_down"
                    )
                    result.deleted = decision.remove_id
                except ProvisionerUnavailableError as e:
                    result.errors.append(str(e))

        if timer.duration is not None:
            record_tick_duration(timer.duration)
        self.last_result = result
        return result

    def start(self) -> None:
        """Start the background loop. Calling it twice is a no-op."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))
        self._logger.info("Scaling loop started", interval_seconds=self.interval)

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
                break
            except TimeoutError:
                pass

            try:
                await self.tick()
            except Exception as e:
                self._logger.error(
                    "Error in scaling loop", error=str(e), error_type=type(e).__name__
                )

        self._logger.info("Scaling loop stopped")

    async def stop(self, timeout: float = 30.0) -> None:
        """Signal the loop to stop and wait for an in-flight tick.

        Args:
            timeout: Seconds to wait before the loop task is cancelled
        """
        if self._task is None:
            return

        if self._stop_event is not None:
            self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except TimeoutError:
            self._logger.warning(
                "Scaling loop did not stop in time; in-flight work abandoned",
                timeout_seconds=timeout,
            )
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
            self._stop_event = None
