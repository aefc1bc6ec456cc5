"""Load-based placement of players onto running instances."""

from collections.abc import Iterable
from typing import Protocol

from serverpool.schemas.types import ServerInstance


class PlacementPolicy(Protocol):
    """Protocol for choosing the instance a new player should join."""

    def select_instance(
        self, instances: Iterable[ServerInstance]
    ) -> ServerInstance | None:
        """Select an instance for a new player.

        Args:
            instances: Registry snapshot to choose from

        Returns:
            The chosen instance, or None when no instance has room
        """
        ...


class LeastLoadedPlacement:
    """Pick the least loaded running instance that still has room.

    Ties on player count go to the oldest instance so that load
    concentrates and newer instances stay idle long enough to be
    reclaimed. Remaining ties fall back to the instance id, which makes
    the choice deterministic for a fixed snapshot.
    """

    def select_instance(
        self, instances: Iterable[ServerInstance]
    ) -> ServerInstance | None:
        candidates = [instance for instance in instances if instance.has_room]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda instance: (
                instance.player_count,
                instance.created_at,
                instance.id,
            ),
        )
