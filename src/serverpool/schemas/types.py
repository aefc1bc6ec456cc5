"""Pydantic models for server instances, sessions and placements."""

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class InstanceStatus(str, Enum):
    """Lifecycle states of a game server instance."""

    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class Address(BaseModel):
    """Network location of a ready instance."""

    host: str = Field(min_length=1, json_schema_extra={"example": "10.0.3.17"})
    port: int = Field(ge=1, le=65535, json_schema_extra={"example": 3000})

    model_config = ConfigDict(frozen=True)


class ServerInstance(BaseModel):
    """One game server instance known to the registry."""

    id: str = Field(
        min_length=1,
        description="Opaque unique identifier, immutable for the instance lifetime",
        json_schema_extra={"example": "game-server-1718030000000-ab12c"},
    )
    address: Address | None = Field(
        default=None,
        description="Network location, absent until the instance reports ready",
    )
    status: InstanceStatus = Field(default=InstanceStatus.STARTING)
    player_count: int = Field(default=0, ge=0)
    capacity: int = Field(gt=0, description="Maximum sessions this instance accepts")
    created_at: float = Field(
        default_factory=time.time,
        description="Creation timestamp, used for ordering and observability only",
    )

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @model_validator(mode="after")
    def check_running_within_capacity(self) -> "ServerInstance":
        """Running instances never hold more sessions than their capacity."""
        if self.status == InstanceStatus.RUNNING and self.player_count > self.capacity:
            raise ValueError(
                f"player_count {self.player_count} exceeds capacity {self.capacity}"
            )
        return self

    @property
    def is_running(self) -> bool:
        return self.status == InstanceStatus.RUNNING

    @property
    def has_room(self) -> bool:
        return self.is_running and self.player_count < self.capacity

    @property
    def is_idle(self) -> bool:
        return self.player_count == 0


class PlayerSession(BaseModel):
    """Binding between a player and the instance serving them."""

    player_id: str = Field(min_length=1)
    server_id: str = Field(min_length=1)
    bound_at: float = Field(default_factory=time.time)

    model_config = ConfigDict(frozen=True)


class Placement(BaseModel):
    """Result of a successful placement request."""

    player_id: str
    server_id: str
    address: Address | None = None

    @property
    def host(self) -> str | None:
        return self.address.host if self.address else None

    @property
    def port(self) -> int | None:
        return self.address.port if self.address else None
