# Pool state, placement, scaling and reconciliation

from .controller import PoolConfig, PoolController
from .placement import LeastLoadedPlacement, PlacementPolicy
from .reconciliation import ReconciliationResult, ReconciliationStartup
from .registry import InstanceView, ServerRegistry, is_running, is_starting
from .scaling import ScalingController, ScalingDecision, TickResult, plan_scaling
from .sessions import SessionTable

__all__ = [
    "InstanceView",
    "LeastLoadedPlacement",
    "PlacementPolicy",
    "PoolConfig",
    "PoolController",
    "ReconciliationResult",
    "ReconciliationStartup",
    "ScalingController",
    "ScalingDecision",
    "ServerRegistry",
    "SessionTable",
    "TickResult",
    "is_running",
    "is_starting",
    "plan_scaling",
]
