"""Unit tests for the PoolController.

Tests cover placement and release, manual server management, readiness
tracking and the lifecycle of the controller against an in-memory
provisioner.
"""

import asyncio
import itertools

import pytest
from prometheus_client import REGISTRY
from pydantic import ValidationError

from serverpool.core.controller import PoolConfig, PoolController
from serverpool.provisioners.memory import InMemoryProvisioner
from serverpool.schemas.types import Address, InstanceStatus, ServerInstance
from serverpool.utils.errors import (
    AlreadyBoundError,
    NoCapacityError,
    ProvisionerUnavailableError,
    UnknownInstanceError,
)

_ages = itertools.count(1)


def add_running(
    controller: PoolController, server_id: str, players: int = 0, capacity: int = 100
) -> None:
    controller.registry.upsert(
        ServerInstance(
            id=server_id,
            status=InstanceStatus.RUNNING,
            address=Address(host=f"10.0.0.{next(_ages)}", port=3000),
            player_count=players,
            capacity=capacity,
            created_at=float(next(_ages)),
        )
    )


@pytest.fixture
def provisioner() -> InMemoryProvisioner:
    return InMemoryProvisioner()


@pytest.fixture
async def controller(provisioner):
    config = PoolConfig(min_instances=0, scaling_interval_seconds=3600)
    controller = PoolController(config, provisioner)
    yield controller
    await controller.shutdown()


class TestPoolConfig:
    def test_defaults(self) -> None:
        config = PoolConfig()

        assert config.namespace == "game-servers"
        assert config.capacity_per_instance == 100
        assert config.min_instances == 2
        assert config.max_instances == 10
        assert config.scaling_interval_seconds == 30.0
        assert config.scale_up_threshold == 0.8
        assert config.scale_down_idle_threshold == 1

    def test_min_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PoolConfig(min_instances=5, max_instances=3)

    def test_threshold_bounds(self) -> None:
        with pytest.raises(ValidationError):
            PoolConfig(scale_up_threshold=1.5)


class TestPlacement:
    @pytest.mark.asyncio
    async def test_places_on_least_loaded(self, controller):
        add_running(controller, "busy", players=10)
        add_running(controller, "quiet", players=2)

        placement = await controller.request_placement("p1")

        assert placement.server_id == "quiet"
        assert placement.host is not None
        assert placement.port == 3000
        assert controller.registry.get("quiet").player_count == 3
        assert controller.sessions.lookup("p1") == "quiet"

    @pytest.mark.asyncio
    async def test_no_capacity(self, controller):
        add_running(controller, "full", players=1, capacity=1)

        with pytest.raises(NoCapacityError) as exc_info:
            await controller.request_placement("p1")

        assert exc_info.value.running_instances == 1
        assert "p1" not in controller.sessions

    @pytest.mark.asyncio
    async def test_no_running_instances(self, controller):
        controller.registry.upsert(ServerInstance(id="booting", capacity=10))

        with pytest.raises(NoCapacityError):
            await controller.request_placement("p1")

    @pytest.mark.asyncio
    async def test_already_bound(self, controller):
        add_running(controller, "a")
        await controller.request_placement("p1")

        with pytest.raises(AlreadyBoundError):
            await controller.request_placement("p1")
        assert controller.registry.get("a").player_count == 1

    @pytest.mark.asyncio
    async def test_empty_player_id(self, controller):
        add_running(controller, "a")

        with pytest.raises(ValueError):
            await controller.request_placement("  ")

    @pytest.mark.asyncio
    async def test_empty_player_id_counted_as_error(self, controller):
        labels = {"outcome": "error"}
        name = "serverpool_placement_requests_total"
        before = REGISTRY.get_sample_value(name, labels) or 0.0

        with pytest.raises(ValueError):
            await controller.request_placement("")

        assert REGISTRY.get_sample_value(name, labels) == before + 1

    @pytest.mark.asyncio
    async def test_draining_instance_not_selected(self, controller):
        add_running(controller, "a")
        controller.registry.set_status("a", InstanceStatus.DRAINING)

        with pytest.raises(NoCapacityError):
            await controller.request_placement("p1")

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_overshoot(self, controller):
        add_running(controller, "last-slot", players=0, capacity=1)

        results = await asyncio.gather(
            *(controller.request_placement(f"p{i}") for i in range(5)),
            return_exceptions=True,
        )

        placed = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, NoCapacityError)]
        assert len(placed) == 1
        assert len(refused) == 4
        assert controller.registry.get("last-slot").player_count == 1
        assert len(controller.sessions) == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_fill_pool_exactly(self, controller):
        add_running(controller, "a", capacity=3)
        add_running(controller, "b", capacity=3)

        await asyncio.gather(
            *(controller.request_placement(f"p{i}") for i in range(8)),
            return_exceptions=True,
        )

        for server in controller.list_servers():
            assert server.player_count <= server.capacity
        assert controller.registry.total_players() == 6


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_decrements(self, controller):
        add_running(controller, "a")
        await controller.request_placement("p1")

        await controller.release_placement("p1")

        assert controller.registry.get("a").player_count == 0
        assert controller.sessions.lookup("p1") is None

    @pytest.mark.asyncio
    async def test_double_release_is_noop(self, controller):
        add_running(controller, "a")
        await controller.request_placement("p1")
        await controller.request_placement("p2")

        await controller.release_placement("p1")
        await controller.release_placement("p1")

        assert controller.registry.get("a").player_count == 1

    @pytest.mark.asyncio
    async def test_release_unknown_player(self, controller):
        add_running(controller, "a")

        await controller.release_placement("nobody")

        assert controller.registry.get("a").player_count == 0

    @pytest.mark.asyncio
    async def test_release_after_instance_removed(self, controller):
        add_running(controller, "a")
        await controller.request_placement("p1")
        controller.registry.remove("a")

        await controller.release_placement("p1")

        assert "p1" not in controller.sessions


class TestManualManagement:
    @pytest.mark.asyncio
    async def test_create_registers_starting_instance(self, controller, provisioner):
        instance = await controller.create_server_manually()

        assert instance.status == InstanceStatus.STARTING
        assert instance.capacity == 100
        assert instance.id.startswith("game-server-")
        assert provisioner.create_calls() == [instance.id]
        assert instance.id in controller.registry

    @pytest.mark.asyncio
    async def test_create_ignores_max_instances(self, provisioner):
        config = PoolConfig(min_instances=0, max_instances=1)
        controller = PoolController(config, provisioner)
        add_running(controller, "a")

        await controller.create_server_manually()

        assert len(controller.registry) == 2
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_create_failure_leaves_no_trace(self, controller, provisioner):
        provisioner.fail_next("create")

        with pytest.raises(ProvisionerUnavailableError):
            await controller.create_server_manually()

        assert len(controller.registry) == 0
        assert controller.pending_creates == 0

    @pytest.mark.asyncio
    async def test_create_timeout(self):
        provisioner = InMemoryProvisioner(latency_seconds=1.0)
        config = PoolConfig(min_instances=0, provisioner_timeout_seconds=0.05)
        controller = PoolController(config, provisioner)

        with pytest.raises(ProvisionerUnavailableError, match="timed out"):
            await controller.create_server_manually()

        assert controller.pending_creates == 0
        assert len(controller.registry) == 0
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_delete_removes_instance_and_sessions(self, controller, provisioner):
        add_running(controller, "a")
        await controller.request_placement("p1")

        await controller.delete_server_manually("a")

        assert "a" not in controller.registry
        assert controller.sessions.lookup("p1") is None
        assert provisioner.delete_calls() == ["a"]

    @pytest.mark.asyncio
    async def test_delete_unknown(self, controller, provisioner):
        with pytest.raises(UnknownInstanceError):
            await controller.delete_server_manually("ghost")
        assert provisioner.delete_calls() == []

    @pytest.mark.asyncio
    async def test_delete_failure_restores_status(self, controller, provisioner):
        add_running(controller, "a")
        provisioner.fail_next("delete")

        with pytest.raises(ProvisionerUnavailableError):
            await controller.delete_server_manually("a")

        assert controller.registry.get("a").status == InstanceStatus.RUNNING

    @pytest.mark.asyncio
    async def test_instance_draining_while_delete_in_flight(self):
        provisioner = InMemoryProvisioner(latency_seconds=0.05)
        controller = PoolController(PoolConfig(min_instances=0), provisioner)
        add_running(controller, "a")

        delete = asyncio.create_task(controller.delete_server_manually("a"))
        await asyncio.sleep(0.01)

        assert controller.registry.get("a").status == InstanceStatus.DRAINING
        with pytest.raises(NoCapacityError):
            await controller.request_placement("p1")

        await delete
        assert "a" not in controller.registry
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_list_servers_returns_snapshots(self, controller):
        add_running(controller, "a")

        servers = controller.list_servers()
        servers[0].player_count = 50

        assert controller.registry.get("a").player_count == 0


class TestOnDemandProvisioning:
    @pytest.mark.asyncio
    async def test_creates_when_below_max(self, controller, provisioner):
        add_running(controller, "a", players=1, capacity=1)

        instance = await controller.provision_on_demand()

        assert instance is not None
        assert provisioner.create_calls() == [instance.id]

    @pytest.mark.asyncio
    async def test_reuses_starting_instance(self, controller, provisioner):
        controller.registry.upsert(ServerInstance(id="booting", capacity=100))

        instance = await controller.provision_on_demand()

        assert instance is not None and instance.id == "booting"
        assert provisioner.create_calls() == []

    @pytest.mark.asyncio
    async def test_respects_max_instances(self, provisioner):
        controller = PoolController(
            PoolConfig(min_instances=0, max_instances=1), provisioner
        )
        add_running(controller, "a", players=1, capacity=1)

        assert await controller.provision_on_demand() is None
        assert provisioner.create_calls() == []
        await controller.shutdown()


class TestReadiness:
    @pytest.mark.asyncio
    async def test_starting_instance_becomes_running(self):
        provisioner = InMemoryProvisioner(auto_ready=False)
        controller = PoolController(PoolConfig(min_instances=0), provisioner)

        instance = await controller.create_server_manually()
        await controller.refresh_readiness()
        assert controller.registry.get(instance.id).status == InstanceStatus.STARTING

        provisioner.mark_ready(instance.id, port=4000)
        await controller.refresh_readiness()

        ready = controller.registry.get(instance.id)
        assert ready.status == InstanceStatus.RUNNING
        assert ready.address is not None and ready.address.port == 4000
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_vanished_instance_is_dropped(self):
        provisioner = InMemoryProvisioner(auto_ready=False)
        controller = PoolController(PoolConfig(min_instances=0), provisioner)

        instance = await controller.create_server_manually()
        provisioner.instances.pop(instance.id)
        await controller.refresh_readiness()

        assert instance.id not in controller.registry
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_background_watch_promotes_instance(self, controller):
        instance = await controller.create_server_manually()

        for _ in range(50):
            if controller.registry.get(instance.id).is_running:
                break
            await asyncio.sleep(0.01)

        assert controller.registry.get(instance.id).is_running


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_tops_up_and_becomes_ready(self, provisioner):
        controller = PoolController(
            PoolConfig(min_instances=2, scaling_interval_seconds=3600), provisioner
        )
        assert not controller.is_ready

        result = await controller.start()

        assert controller.is_ready
        assert len(result.created) == 2
        assert len(provisioner.create_calls()) == 2
        assert controller.scaling.is_running

        await controller.shutdown()
        assert not controller.is_ready
        assert not controller.scaling.is_running

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, provisioner):
        controller = PoolController(PoolConfig(min_instances=1), provisioner)

        await controller.start()
        await controller.start()

        assert len(provisioner.create_calls()) == 1
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, provisioner):
        async with PoolController(PoolConfig(min_instances=1), provisioner) as pool:
            assert pool.is_ready
        assert not pool.is_ready

    @pytest.mark.asyncio
    async def test_stats(self, controller):
        add_running(controller, "a", players=3)
        controller.registry.upsert(ServerInstance(id="b", capacity=100))

        stats = controller.stats()

        assert stats["instances"]["running"] == 1
        assert stats["instances"]["starting"] == 1
        assert stats["total_players"] == 3
        assert stats["ready"] is False
