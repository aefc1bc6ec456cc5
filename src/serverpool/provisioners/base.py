"""Contract between the pool controller and the orchestration platform.

Provisioners create and delete game server instances and report their
state. The platform is eventually consistent: a created instance first
appears as not ready and becomes ready later, which the controller
observes through ``describe``.
"""

import time
from typing import Protocol

from pydantic import BaseModel, Field

MANAGED_LABELS: dict[str, str] = {
    "app": "game-server-instance",
    "managed-by": "game-server-controller",
}


class ResourceSpec(BaseModel):
    """CPU and memory quantities in platform notation."""

    cpu: str = "100m"
    memory: str = "256Mi"


class InstanceTemplate(BaseModel):
    """Shape shared by every instance the controller provisions."""

    image: str = "game-server-instance:latest"
    container_port: int = Field(default=3000, ge=1, le=65535)
    labels: dict[str, str] = Field(default_factory=lambda: dict(MANAGED_LABELS))
    env: dict[str, str] = Field(default_factory=dict)
    requests: ResourceSpec = Field(default_factory=ResourceSpec)
    limits: ResourceSpec = Field(
        default_factory=lambda: ResourceSpec(cpu="500m", memory="512Mi")
    )
    health_path: str = "/health"

    def for_instance(self, instance_id: str, capacity: int) -> "InstanceSpec":
        return InstanceSpec(
            instance_id=instance_id, capacity=capacity, **self.model_dump()
        )


class InstanceSpec(InstanceTemplate):
    """Everything a provisioner needs to start one instance."""

    instance_id: str = Field(min_length=1)
    capacity: int = Field(default=100, gt=0)


class InstanceHandle(BaseModel):
    """Acknowledgement of an accepted create request."""

    instance_id: str
    created_at: float = Field(default_factory=time.time)


class InstanceDescriptor(BaseModel):
    """Platform view of one instance."""

    instance_id: str
    ready: bool = False
    terminated: bool = False
    host: str | None = None
    port: int | None = None
    created_at: float = Field(default_factory=time.time)
    labels: dict[str, str] = Field(default_factory=dict)


def selector_for(labels: dict[str, str]) -> str:
    """Render labels as a platform label selector ("k1=v1,k2=v2")."""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def parse_selector(selector: str) -> dict[str, str]:
    """Parse an equality-based label selector into a dict."""
    labels: dict[str, str] = {}
    for term in selector.split(","):
        term = term.strip()
        if not term:
            continue
        key, _, value = term.partition("=")
        labels[key.strip()] = value.strip()
    return labels


class InstanceProvisioner(Protocol):
    """Asynchronous instance lifecycle API of the orchestration platform.

    Implementations raise ProvisionerUnavailableError for any failure to
    reach or use the platform.
    """

    async def create(self, spec: InstanceSpec) -> InstanceHandle:
        """Request a new instance; readiness arrives later via ``describe``."""
        ...

    async def delete(self, instance_id: str) -> None:
        """Delete an instance. Deleting an absent instance succeeds."""
        ...

    async def list(self, label_selector: str) -> list[InstanceDescriptor]:
        """List instances matching ``label_selector``."""
        ...

    async def describe(self, instance_id: str) -> InstanceDescriptor | None:
        """Return the current platform view of an instance, or None if gone."""
        ...

    async def close(self) -> None:
        """Release client resources."""
        ...
