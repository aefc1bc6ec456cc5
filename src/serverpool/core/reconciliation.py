"""Startup reconciliation with the orchestration platform.

Before the controller accepts placements it rebuilds the registry from
the instances already running on the platform, then creates one
instance for every running instance missing below ``min_instances``.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from serverpool.provisioners.base import InstanceDescriptor
from serverpool.schemas.types import Address, InstanceStatus, ServerInstance
from serverpool.utils.errors import DiscoveryError, ProvisionerUnavailableError
from serverpool.utils.telemetry import get_logger, record_scaling_action

if TYPE_CHECKING:
    from serverpool.core.controller import PoolController


@dataclass
class ReconciliationResult:
    discovered: list[str] = field(default_factory=list)
    starting: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    discovery_failed: bool = False
    errors: list[str] = field(default_factory=list)


class ReconciliationStartup:
    """Rebuilds controller state from the platform and tops up the pool."""

    def __init__(self, controller: "PoolController"):
        self.controller = controller
        self._logger = get_logger("serverpool.reconciliation")

    async def discover(self) -> list[InstanceDescriptor]:
        """List managed instances on the platform.

        Raises:
            DiscoveryError: If the platform could not be listed
        """
        selector = self.controller.label_selector
        try:
            return await self.controller.call_provisioner(
                "list", lambda: self.controller.provisioner.list(selector)
            )
        except ProvisionerUnavailableError as e:
            raise DiscoveryError(selector, e.reason) from e

    async def run(self) -> ReconciliationResult:
        controller = self.controller
        result = ReconciliationResult()

        try:
            descriptors = await self.discover()
        except DiscoveryError as e:
            # Proceed as if nothing exists; the top-up below repopulates the pool
            self._logger.error(
                "Error discovering existing servers",
                error=str(e),
                recovery_action=e.recovery_action.value,
            )
            result.discovery_failed = True
            result.errors.append(str(e))
            descriptors = []

        async with controller.lock:
            for descriptor in descriptors:
                if descriptor.terminated:
                    continue
                if descriptor.instance_id in controller.registry:
                    continue
                self._register(descriptor, result)
            running = len(result.discovered)
            controller.update_gauges()

        self._logger.info(
            "Discovered existing servers",
            running=len(result.discovered),
            starting=len(result.starting),
        )

        missing = controller.config.min_instances - running
        if missing > 0:
            self._logger.info(
                "Creating servers to meet minimum requirement", count=missing
            )
            for _ in range(missing):
                record_scaling_action("top_up")
                try:
                    instance = await controller.provision_instance(reason="top_up")
                    result.created.append(instance.id)
                except ProvisionerUnavailableError as e:
                    result.errors.append(str(e))

        for server_id in result.starting:
            controller.watch_readiness(server_id)

        return result

    def _register(
        self, descriptor: InstanceDescriptor, result: ReconciliationResult
    ) -> None:
        capacity = self.controller.config.capacity_per_instance
        if descriptor.ready and descriptor.host:
            instance = ServerInstance(
                id=descriptor.instance_id,
                status=InstanceStatus.RUNNING,
                address=Address(
                    host=descriptor.host,
                    port=descriptor.port or self.controller.template.container_port,
                ),
                capacity=capacity,
                created_at=descriptor.created_at,
            )
            result.discovered.append(instance.id)
            self._logger.info(
                "Discovered existing server",
                server_id=instance.id,
                host=descriptor.host,
                port=instance.address.port if instance.address else None,
            )
        else:
            instance = ServerInstance(
                id=descriptor.instance_id,
                status=InstanceStatus.STARTING,
                capacity=capacity,
                created_at=descriptor.created_at,
            )
            result.starting.append(instance.id)
            self._logger.info("Discovered starting server", server_id=instance.id)

        self.controller.registry.upsert(instance)
