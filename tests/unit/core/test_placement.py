"""Unit tests for least-loaded placement."""

from serverpool.core.placement import LeastLoadedPlacement
from serverpool.schemas.types import Address, InstanceStatus, ServerInstance


def instance(
    server_id: str,
    players: int,
    created_at: float,
    status: InstanceStatus = InstanceStatus.RUNNING,
    capacity: int = 100,
) -> ServerInstance:
    return ServerInstance(
        id=server_id,
        status=status,
        address=Address(host="10.0.0.1", port=3000),
        player_count=players,
        capacity=capacity,
        created_at=created_at,
    )


class TestLeastLoadedPlacement:
    def test_picks_lowest_player_count(self):
        policy = LeastLoadedPlacement()
        chosen = policy.select_instance(
            [instance("a", 30, 1.0), instance("b", 10, 2.0), instance("c", 20, 3.0)]
        )

        assert chosen is not None and chosen.id == "b"

    def test_ties_go_to_oldest_then_id(self):
        policy = LeastLoadedPlacement()

        older = policy.select_instance([instance("b", 5, 2.0), instance("a", 5, 3.0)])
        same_age = policy.select_instance(
            [instance("b", 5, 1.0), instance("a", 5, 1.0)]
        )

        assert older is not None and older.id == "b"
        assert same_age is not None and same_age.id == "a"

    def test_deterministic_regardless_of_order(self):
        policy = LeastLoadedPlacement()
        snapshot = [instance("a", 5, 1.0), instance("b", 5, 1.0), instance("c", 7, 0.5)]

        forward = policy.select_instance(snapshot)
        backward = policy.select_instance(list(reversed(snapshot)))

        assert forward is not None and backward is not None
        assert forward.id == backward.id == "a"

    def test_skips_full_and_non_running(self):
        policy = LeastLoadedPlacement()
        chosen = policy.select_instance(
            [
                instance("full", 100, 1.0),
                instance("draining", 0, 1.0, status=InstanceStatus.DRAINING),
                instance("open", 99, 5.0),
            ]
        )

        assert chosen is not None and chosen.id == "open"

    def test_none_when_no_room(self):
        policy = LeastLoadedPlacement()

        assert policy.select_instance([]) is None
        assert policy.select_instance([instance("full", 2, 1.0, capacity=2)]) is None
