"""Server-pool controller.

This module provides the PoolController class that owns the server
registry and the session table, places players onto instances, and
drives the reconciliation and scaling components against an
InstanceProvisioner.

Concurrency model: everything runs on one asyncio event loop. Registry
and session mutations happen inside ``self._lock``. Provisioner calls are
always awaited outside the lock; their results are applied afterwards in
a separate locked section.
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, Field, model_validator

from serverpool.core.placement import LeastLoadedPlacement, PlacementPolicy
from serverpool.core.reconciliation import ReconciliationResult, ReconciliationStartup
from serverpool.core.registry import ServerRegistry, is_running, is_starting
from serverpool.core.scaling import ScalingController
from serverpool.core.sessions import SessionTable
from serverpool.provisioners.base import (
    InstanceProvisioner,
    InstanceTemplate,
    selector_for,
)
from serverpool.schemas.types import (
    Address,
    InstanceStatus,
    Placement,
    ServerInstance,
)
from serverpool.utils.errors import (
    AlreadyBoundError,
    NoCapacityError,
    ProvisionerUnavailableError,
)
from serverpool.utils.telemetry import (
    async_performance_timer,
    get_logger,
    record_placement_outcome,
    record_provisioner_operation,
    update_pool_gauges,
)

T = TypeVar("T")


class PoolConfig(BaseModel):
    """Configuration for the PoolController."""

    namespace: str = Field(default="game-servers", min_length=1)
    capacity_per_instance: int = Field(default=100, gt=0)
    min_instances: int = Field(default=2, ge=0)
    max_instances: int = Field(default=10, ge=1)
    scaling_interval_seconds: float = Field(default=30.0, gt=0)
    scale_up_threshold: float = Field(default=0.8, gt=0, le=1)
    scale_down_idle_threshold: int = Field(default=1, ge=0)
    count_starting_toward_max: bool = Field(
        default=False,
        description="Also count starting instances and in-flight creates "
        "against max_instances when scaling up",
    )
    provisioner_timeout_seconds: float = Field(default=30.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=30.0, ge=0)
    readiness_poll_interval_seconds: float = Field(default=2.0, gt=0)
    readiness_timeout_seconds: float = Field(default=300.0, gt=0)
    instance_name_prefix: str = Field(default="game-server", min_length=1)

    @model_validator(mode="after")
    def check_instance_bounds(self) -> "PoolConfig":
        if self.min_instances > self.max_instances:
            raise ValueError(
                f"min_instances ({self.min_instances}) exceeds "
                f"max_instances ({self.max_instances})"
            )
        return self


class PoolController:
    """Central coordinator for the game server pool.

    Owns the ServerRegistry and SessionTable and is the only component
    allowed to mutate them. Transport and observability layers read
    snapshots through ``list_servers`` and ``stats``.
    """

    def __init__(
        self,
        config: PoolConfig,
        provisioner: InstanceProvisioner,
        template: InstanceTemplate | None = None,
        placement_policy: PlacementPolicy | None = None,
    ):
        """Initialize the controller.

        Args:
            config: Pool configuration
            provisioner: Orchestration platform adapter
            template: Shape of provisioned instances (image, port, resources)
            placement_policy: Policy choosing instances for new players
        """
        self.config = config
        self.provisioner = provisioner
        self.template = template or InstanceTemplate()
        self.placement_policy: PlacementPolicy = (
            placement_policy or LeastLoadedPlacement()
        )
        self.registry = ServerRegistry()
        self.sessions = SessionTable()

        self.scaling = ScalingController(self)
        self.reconciliation = ReconciliationStartup(self)

        self._lock = asyncio.Lock()
        self._pending_creates = 0
        self._ready = False
        self._started = False
        self._readiness_tasks: set[asyncio.Task[None]] = set()
        self.last_reconciliation: ReconciliationResult | None = None

        self._logger = get_logger("serverpool.controller", namespace=config.namespace)

        self._logger.info(
            "Pool controller initialized",
            capacity_per_instance=config.capacity_per_instance,
            min_instances=config.min_instances,
            max_instances=config.max_instances,
            provisioner_type=type(provisioner).__name__,
        )

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def pending_creates(self) -> int:
        return self._pending_creates

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def label_selector(self) -> str:
        return selector_for(self.template.labels)

    # Lifecycle

    async def start(self) -> ReconciliationResult:
        """Reconcile with the platform, then start the scaling loop.

        The controller reports ready once reconciliation (including the
        top-up to ``min_instances``) has completed.
        """
        if self._started and self.last_reconciliation is not None:
            return self.last_reconciliation

        self._started = True
        self._logger.info("Starting pool controller")
        self.last_reconciliation = await self.reconciliation.run()
        self._ready = True
        self.scaling.start()
        self._logger.info(
            "Pool controller ready",
            discovered=len(self.last_reconciliation.discovered),
            created=len(self.last_reconciliation.created),
        )
        return self.last_reconciliation

    async def shutdown(self) -> None:
        """Stop the scaling loop first, then release remaining resources.

        In-flight provisioner calls get ``shutdown_timeout_seconds`` to
        finish; anything still running after that is abandoned.
        """
        self._logger.info("Starting pool controller shutdown")
        self._ready = False

        await self.scaling.stop(timeout=self.config.shutdown_timeout_seconds)

        for task in list(self._readiness_tasks):
            task.cancel()
        if self._readiness_tasks:
            await asyncio.gather(*self._readiness_tasks, return_exceptions=True)
        self._readiness_tasks.clear()

        try:
            await self.provisioner.close()
        except Exception as e:
            self._logger.warning("Provisioner close failed", error=str(e))

        self._started = False
        self._logger.info("Pool controller shutdown complete")

    async def __aenter__(self) -> "PoolController":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    # Provisioner access

    async def call_provisioner(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        server_id: str | None = None,
    ) -> T:
        """Run one provisioner call with a timeout, metrics and tracing.

        Raises:
            ProvisionerUnavailableError: On failure or timeout
        """
        timeout = self.config.provisioner_timeout_seconds
        async with async_performance_timer(
            f"provisioner.{operation}",
            server_id=server_id,
            logger=self._logger,
            tracer_name="serverpool.provisioner",
        ):
            try:
                result = await asyncio.wait_for(call(), timeout=timeout)
            except TimeoutError as e:
                record_provisioner_operation(operation, "error")
                raise ProvisionerUnavailableError(
                    operation, f"timed out after {timeout}s", server_id
                ) from e
            except ProvisionerUnavailableError:
                record_provisioner_operation(operation, "error")
                raise

        record_provisioner_operation(operation, "success")
        return result

    def _new_instance_id(self) -> str:
        millis = int(time.time() * 1000)
        return f"{self.config.instance_name_prefix}-{millis}-{uuid.uuid4().hex[:5]}"

    async def provision_instance(self, reason: str) -> ServerInstance:
        """Ask the provisioner for one new instance and register it as starting.

        Raises:
            ProvisionerUnavailableError: If the create call fails
        """
        server_id = self._new_instance_id()
        spec = self.template.for_instance(server_id, self.config.capacity_per_instance)

        self._pending_creates += 1
        try:
            handle = await self.call_provisioner(
                "create", lambda: self.provisioner.create(spec), server_id
            )
        except BaseException as e:
            self._pending_creates -= 1
            if isinstance(e, ProvisionerUnavailableError):
                self._logger.error(
                    "Error creating game server",
                    server_id=server_id,
                    reason=reason,
                    error=str(e),
                )
            raise

        async with self._lock:
            self._pending_creates -= 1
            instance = self.registry.upsert(
                ServerInstance(
                    id=server_id,
                    status=InstanceStatus.STARTING,
                    capacity=self.config.capacity_per_instance,
                    created_at=handle.created_at,
                )
            )
            self.update_gauges()

        self._logger.info("Created new game server", server_id=server_id, reason=reason)
        self.watch_readiness(server_id)
        return instance

    async def decommission_instance(self, server_id: str, reason: str) -> None:
        """Delete an instance on the platform, then drop it from local state.

        Raises:
            ProvisionerUnavailableError: If the delete call fails
        """
        try:
            await self.call_provisioner(
                "delete", lambda: self.provisioner.delete(server_id), server_id
            )
        except ProvisionerUnavailableError as e:
            self._logger.error(
                "Error deleting game server",
                server_id=server_id,
                reason=reason,
                error=str(e),
            )
            raise

        async with self._lock:
            self.registry.remove(server_id)
            dropped = self.sessions.unbind_server(server_id)
            self.update_gauges()

        if dropped:
            self._logger.warning(
                "Sessions dropped with deleted server",
                server_id=server_id,
                dropped_sessions=len(dropped),
            )
        self._logger.info("Deleted game server", server_id=server_id, reason=reason)

    # Readiness

    def watch_readiness(self, server_id: str) -> None:
        """Poll a starting instance in the background until it is ready."""
        task = asyncio.create_task(self._await_ready(server_id))
        self._readiness_tasks.add(task)
        task.add_done_callback(self._readiness_tasks.discard)

    async def _await_ready(self, server_id: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.readiness_timeout_seconds
        while loop.time() < deadline:
            if await self.refresh_instance(server_id):
                return
            await asyncio.sleep(self.config.readiness_poll_interval_seconds)

        self._logger.warning(
            "Game server not ready within timeout",
            server_id=server_id,
            timeout_seconds=self.config.readiness_timeout_seconds,
        )

    async def refresh_instance(self, server_id: str) -> bool:
        """Apply the platform's view of one starting instance.

        Returns:
            True once the instance is no longer starting (ready, gone or
            transitioned elsewhere), False if it should be polled again
        """
        current = self.registry.find(server_id)
        if current is None or current.status != InstanceStatus.STARTING:
            return True

        try:
            descriptor = await self.call_provisioner(
                "describe", lambda: self.provisioner.describe(server_id), server_id
            )
        except ProvisionerUnavailableError as e:
            self._logger.warning(
                "Readiness check failed", server_id=server_id, error=str(e)
            )
            return False

        async with self._lock:
            current = self.registry.find(server_id)
            if current is None or current.status != InstanceStatus.STARTING:
                return True

            if descriptor is None or descriptor.terminated:
                self.registry.remove(server_id)
                self.sessions.unbind_server(server_id)
                self.update_gauges()
                self._logger.warning(
                    "Starting game server vanished from platform", server_id=server_id
                )
                return True

            if descriptor.ready and descriptor.host:
                self.registry.set_status(
                    server_id,
                    InstanceStatus.RUNNING,
                    address=Address(
                        host=descriptor.host,
                        port=descriptor.port or self.template.container_port,
                    ),
                )
                self.update_gauges()
                self._logger.info(
                    "Game server ready",
                    server_id=server_id,
                    host=descriptor.host,
                    port=descriptor.port,
                )
                return True

        return False

    async def refresh_readiness(self) -> int:
        """Refresh every starting instance once.

        Returns:
            Number of instances that left the starting state
        """
        starting = [instance.id for instance in self.registry.list(is_starting)]
        settled = 0
        for server_id in starting:
            if await self.refresh_instance(server_id):
                settled += 1
        return settled

    # Transport-facing operations

    async def request_placement(self, player_id: str) -> Placement:
        """Place a player on the least loaded running instance.

        Selection, the player count increment and the session bind happen
        in one critical section, so two concurrent requests can never
        take the same last slot.

        Raises:
            ValueError: If player_id is empty
            AlreadyBoundError: If the player already has a session
            NoCapacityError: If no running instance has room
        """
        if not player_id or not player_id.strip():
            record_placement_outcome("error")
            raise ValueError("player_id cannot be empty")

        async with self._lock:
            existing = self.sessions.lookup(player_id)
            if existing is not None:
                record_placement_outcome("error")
                raise AlreadyBoundError(player_id, existing)

            chosen = self.placement_policy.select_instance(
                self.registry.list(is_running)
            )
            if chosen is None:
                record_placement_outcome("no_capacity")
                raise NoCapacityError(player_id, len(self.registry.list(is_running)))

            updated = self.registry.adjust_player_count(chosen.id, 1)
            self.sessions.bind(player_id, chosen.id)
            self.update_gauges()

        record_placement_outcome("success")
        self._logger.info(
            "Player placed",
            player_id=player_id,
            server_id=updated.id,
            player_count=updated.player_count,
            capacity=updated.capacity,
        )
        return Placement(
            player_id=player_id, server_id=updated.id, address=updated.address
        )

    async def release_placement(self, player_id: str) -> None:
        """Release a player's session. Unknown players are ignored."""
        async with self._lock:
            server_id = self.sessions.unbind(player_id)
            if server_id is None:
                return
            if server_id in self.registry:
                self.registry.adjust_player_count(server_id, -1)
            self.update_gauges()

        self._logger.info("Player released", player_id=player_id, server_id=server_id)

    def list_servers(self) -> list[ServerInstance]:
        return list(self.registry.list())

    async def create_server_manually(self) -> ServerInstance:
        """Provision one instance regardless of the scaling heuristic.

        Raises:
            ProvisionerUnavailableError: If the create call fails
        """
        return await self.provision_instance(reason="manual")

    async def provision_on_demand(self) -> ServerInstance | None:
        """Make sure an instance is on its way for players who found no room.

        An instance that is already starting is returned instead of creating
        another one. A new instance is only created while the pool is below
        ``max_instances``.

        Returns:
            The starting instance, or None when the pool is at its ceiling

        Raises:
            ProvisionerUnavailableError: If the create call fails
        """
        async with self._lock:
            starting = next(iter(self.registry.list(is_starting)), None)
            if starting is not None:
                return starting
            provisioned = (
                len(self.registry.list(is_running))
                + len(self.registry.list(is_starting))
                + self._pending_creates
            )
            if provisioned >= self.config.max_instances:
                return None

        return await self.provision_instance(reason="on_demand")

    async def delete_server_manually(self, server_id: str) -> None:
        """Drain and delete one instance.

        The instance is marked draining first so no new player lands on it
        while the delete is in flight. If the delete fails the previous
        status is restored.

        Raises:
            UnknownInstanceError: If the id is not registered
            ProvisionerUnavailableError: If the delete call fails
        """
        async with self._lock:
            previous = self.registry.get(server_id).status
            if previous != InstanceStatus.DRAINING:
                self.registry.set_status(server_id, InstanceStatus.DRAINING)
            self.update_gauges()

        try:
            await self.decommission_instance(server_id, reason="manual")
        except ProvisionerUnavailableError:
            async with self._lock:
                current = self.registry.find(server_id)
                if current is not None and current.status == InstanceStatus.DRAINING:
                    self.registry.set_status(server_id, previous)
                    self.update_gauges()
            raise

    # Observability

    def update_gauges(self) -> None:
        update_pool_gauges(
            running=len(self.registry.list(is_running)),
            starting=len(self.registry.list(is_starting)),
            bound_players=self.registry.total_players(),
        )

    def stats(self) -> dict[str, Any]:
        """Snapshot of pool counters for health checks and debugging."""
        counts = {status.value: 0 for status in InstanceStatus}
        for instance in self.registry.list():
            counts[instance.status.value] += 1
        return {
            "ready": self._ready,
            "instances": counts,
            "total_players": self.registry.total_players(),
            "sessions": len(self.sessions),
            "pending_creates": self._pending_creates,
            "scaling_loop_running": self.scaling.is_running,
        }
