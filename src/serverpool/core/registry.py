"""In-memory registry of game server instances.

The registry holds only local state and never performs network I/O.
It does not lock by itself: the owning PoolController serializes every
mutation behind its own asyncio lock, so reads and writes here are
plain dictionary operations.
"""

from collections.abc import Callable, Iterator

from serverpool.schemas.types import InstanceStatus, ServerInstance
from serverpool.utils.errors import UnknownInstanceError

InstancePredicate = Callable[[ServerInstance], bool]


def is_running(instance: ServerInstance) -> bool:
    return instance.status == InstanceStatus.RUNNING


def is_starting(instance: ServerInstance) -> bool:
    return instance.status == InstanceStatus.STARTING


class InstanceView:
    """Lazy, finite and restartable sequence of registry snapshots.

    Each iteration takes a fresh snapshot of the registry and yields copies
    of the instances matching the predicate, so a view can be iterated
    any number of times and never exposes mutable registry entries.
    """

    def __init__(
        self, registry: "ServerRegistry", predicate: InstancePredicate | None = None
    ):
        self._registry = registry
        self._predicate = predicate

    def __iter__(self) -> Iterator[ServerInstance]:
        for instance in list(self._registry._instances.values()):
            if self._predicate is None or self._predicate(instance):
                yield instance.model_copy()

    def __len__(self) -> int:
        return sum(1 for _ in self)


class ServerRegistry:
    """Authoritative set of known server instances keyed by id.

    Iteration order is insertion order; replacing an existing id keeps
    its original position.
    """

    def __init__(self) -> None:
        self._instances: dict[str, ServerInstance] = {}

    def upsert(self, instance: ServerInstance) -> ServerInstance:
        """Insert or replace an instance.

        Args:
            instance: Instance to store; a private copy is kept

        Returns:
            Snapshot of the stored instance
        """
        stored = instance.model_copy()
        self._instances[stored.id] = stored
        return stored.model_copy()

    def remove(self, server_id: str) -> ServerInstance | None:
        """Delete an instance, returning it if it was present."""
        removed = self._instances.pop(server_id, None)
        return removed.model_copy() if removed is not None else None

    def get(self, server_id: str) -> ServerInstance:
        """Return a snapshot of an instance.

        Raises:
            UnknownInstanceError: If the id is not registered
        """
        instance = self._instances.get(server_id)
        if instance is None:
            raise UnknownInstanceError(server_id)
        return instance.model_copy()

    def find(self, server_id: str) -> ServerInstance | None:
        """Return a snapshot of an instance or None."""
        instance = self._instances.get(server_id)
        return instance.model_copy() if instance is not None else None

    def list(self, predicate: InstancePredicate | None = None) -> InstanceView:
        """Return a lazy view of instances matching ``predicate``."""
        return InstanceView(self, predicate)

    def adjust_player_count(self, server_id: str, delta: int) -> ServerInstance:
        """Add ``delta`` to an instance's player count, clamped at zero.

        Raises:
            UnknownInstanceError: If the id is not registered
            pydantic.ValidationError: If a running instance would exceed capacity
        """
        instance = self._instances.get(server_id)
        if instance is None:
            raise UnknownInstanceError(server_id)
        instance.player_count = max(0, instance.player_count + delta)
        return instance.model_copy()

    def set_status(
        self, server_id: str, status: InstanceStatus, **changes: object
    ) -> ServerInstance:
        """Transition an instance to ``status`` and apply extra field changes.

        Raises:
            UnknownInstanceError: If the id is not registered
        """
        instance = self._instances.get(server_id)
        if instance is None:
            raise UnknownInstanceError(server_id)
        updated = instance.model_copy(update={"status": status, **changes})
        # model_copy(update=...) skips validation
        updated = ServerInstance.model_validate(updated.model_dump())
        self._instances[server_id] = updated
        return updated.model_copy()

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    def total_players(self, predicate: InstancePredicate | None = is_running) -> int:
        return sum(instance.player_count for instance in self.list(predicate))
