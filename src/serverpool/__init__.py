"""serverpool - Game server pool controller.

serverpool keeps a pool of game server instances on an orchestration
platform, places players onto the least loaded instance, and grows or
shrinks the pool with load.
"""

__version__ = "0.1.0"

from .core import (
    LeastLoadedPlacement,
    PlacementPolicy,
    PoolConfig,
    PoolController,
    ReconciliationStartup,
    ScalingController,
    ServerRegistry,
    SessionTable,
    TickResult,
)
from .provisioners import InMemoryProvisioner, InstanceProvisioner, InstanceTemplate
from .schemas import InstanceStatus, Placement, ServerInstance

__all__ = [
    "InMemoryProvisioner",
    "InstanceProvisioner",
    "InstanceStatus",
    "InstanceTemplate",
    "LeastLoadedPlacement",
    "Placement",
    "PlacementPolicy",
    "PoolConfig",
    "PoolController",
    "ReconciliationStartup",
    "ScalingController",
    "ServerInstance",
    "ServerRegistry",
    "SessionTable",
    "TickResult",
]
