"""In-process provisioner for local development and tests."""

import asyncio
import time

from serverpool.provisioners.base import (
    InstanceDescriptor,
    InstanceHandle,
    InstanceSpec,
    parse_selector,
)
from serverpool.utils.errors import ProvisionerUnavailableError
from serverpool.utils.telemetry import get_logger


class InMemoryProvisioner:
    """Provisioner that keeps instances in a dictionary.

    Instances become ready immediately unless ``auto_ready`` is disabled,
    in which case tests promote them with ``mark_ready``. Failures can be
    injected per operation with ``fail_next`` or permanently with
    ``unavailable``. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        auto_ready: bool = True,
        host_prefix: str = "10.0.0.",
        latency_seconds: float = 0.0,
    ):
        self.auto_ready = auto_ready
        self.host_prefix = host_prefix
        self.latency_seconds = latency_seconds
        self.unavailable = False
        self.instances: dict[str, InstanceDescriptor] = {}
        self.calls: list[tuple[str, str]] = []
        self._fail_next: dict[str, int] = {}
        self._next_host = 1
        self._logger = get_logger("serverpool.provisioner.memory")

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` fail."""
        self._fail_next[operation] = self._fail_next.get(operation, 0) + times

    def seed(self, descriptor: InstanceDescriptor) -> None:
        """Register a pre-existing instance, as if created by a previous run."""
        self.instances[descriptor.instance_id] = descriptor

    def mark_ready(self, instance_id: str, port: int = 3000) -> None:
        descriptor = self.instances[instance_id]
        self.instances[instance_id] = descriptor.model_copy(
            update={"ready": True, "host": self._allocate_host(), "port": port}
        )

    def create_calls(self) -> list[str]:
        return [target for operation, target in self.calls if operation == "create"]

    def delete_calls(self) -> list[str]:
        return [target for operation, target in self.calls if operation == "delete"]

    async def _enter(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if self.unavailable:
            raise ProvisionerUnavailableError(operation, "platform unavailable", target)
        remaining = self._fail_next.get(operation, 0)
        if remaining:
            self._fail_next[operation] = remaining - 1
            raise ProvisionerUnavailableError(operation, "injected failure", target)

    def _allocate_host(self) -> str:
        host = f"{self.host_prefix}{self._next_host}"
        self._next_host += 1
        return host

    async def create(self, spec: InstanceSpec) -> InstanceHandle:
        await self._enter("create", spec.instance_id)
        now = time.time()
        descriptor = InstanceDescriptor(
            instance_id=spec.instance_id,
            labels=dict(spec.labels),
            created_at=now,
        )
        if self.auto_ready:
            descriptor = descriptor.model_copy(
                update={
                    "ready": True,
                    "host": self._allocate_host(),
                    "port": spec.container_port,
                }
            )
        self.instances[spec.instance_id] = descriptor
        self._logger.debug("Instance created", server_id=spec.instance_id)
        return InstanceHandle(instance_id=spec.instance_id, created_at=now)

    async def delete(self, instance_id: str) -> None:
        await self._enter("delete", instance_id)
        self.instances.pop(instance_id, None)

    async def list(self, label_selector: str) -> list[InstanceDescriptor]:
        await self._enter("list", label_selector)
        wanted = parse_selector(label_selector)
        return [
            descriptor
            for descriptor in self.instances.values()
            if all(descriptor.labels.get(k) == v for k, v in wanted.items())
        ]

    async def describe(self, instance_id: str) -> InstanceDescriptor | None:
        await self._enter("describe", instance_id)
        return self.instances.get(instance_id)

    async def close(self) -> None:
        self._logger.debug("In-memory provisioner closed")
