"""Unit tests for startup reconciliation."""

import pytest

from serverpool.core.controller import PoolConfig, PoolController
from serverpool.provisioners.base import MANAGED_LABELS, InstanceDescriptor
from serverpool.provisioners.memory import InMemoryProvisioner
from serverpool.schemas.types import Address, InstanceStatus


def descriptor(instance_id: str, **kwargs) -> InstanceDescriptor:
    kwargs.setdefault("labels", dict(MANAGED_LABELS))
    return InstanceDescriptor(instance_id=instance_id, **kwargs)


def make_controller(
    provisioner: InMemoryProvisioner, min_instances: int = 2
) -> PoolController:
    config = PoolConfig(
        min_instances=min_instances,
        max_instances=10,
        scaling_interval_seconds=3600,
        readiness_poll_interval_seconds=3600,
    )
    return PoolController(config, provisioner)


class TestReconciliationStartup:
    @pytest.mark.asyncio
    async def test_empty_platform_tops_up_to_min(self):
        provisioner = InMemoryProvisioner()
        controller = make_controller(provisioner, min_instances=2)

        result = await controller.reconciliation.run()

        assert result.discovered == []
        assert len(result.created) == 2
        assert len(provisioner.create_calls()) == 2
        assert len(controller.registry) == 2
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_ready_instances_registered_as_running(self):
        provisioner = InMemoryProvisioner()
        provisioner.seed(
            descriptor("existing-1", ready=True, host="10.1.0.1", port=3000)
        )
        provisioner.seed(
            descriptor("existing-2", ready=True, host="10.1.0.2", port=3000)
        )
        controller = make_controller(provisioner, min_instances=2)

        result = await controller.reconciliation.run()

        assert result.discovered == ["existing-1", "existing-2"]
        assert result.created == []
        assert provisioner.create_calls() == []
        instance = controller.registry.get("existing-1")
        assert instance.status == InstanceStatus.RUNNING
        assert instance.player_count == 0
        assert instance.capacity == 100
        assert instance.address == Address(host="10.1.0.1", port=3000)
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_unready_instances_registered_as_starting(self):
        provisioner = InMemoryProvisioner(auto_ready=False)
        provisioner.seed(descriptor("booting"))
        controller = make_controller(provisioner, min_instances=0)

        result = await controller.reconciliation.run()

        assert result.starting == ["booting"]
        assert result.created == []
        assert controller.registry.get("booting").status == InstanceStatus.STARTING
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_unready_instances_do_not_satisfy_min(self):
        provisioner = InMemoryProvisioner(auto_ready=False)
        provisioner.seed(descriptor("booting-1"))
        provisioner.seed(descriptor("booting-2"))
        controller = make_controller(provisioner, min_instances=2)

        result = await controller.reconciliation.run()

        assert result.discovered == []
        assert result.starting == ["booting-1", "booting-2"]
        assert len(result.created) == 2
        assert len(provisioner.create_calls()) == 2
        assert len(controller.registry) == 4
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_partial_pool_is_topped_up(self):
        provisioner = InMemoryProvisioner()
        provisioner.seed(descriptor("existing", ready=True, host="10.1.0.1"))
        controller = make_controller(provisioner, min_instances=3)

        result = await controller.reconciliation.run()

        assert result.discovered == ["existing"]
        assert len(result.created) == 2
        # A ready instance without a reported port falls back to the template
        assert controller.registry.get("existing").address.port == 3000
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_unmanaged_and_terminated_instances_ignored(self):
        provisioner = InMemoryProvisioner()
        provisioner.seed(
            descriptor(
                "foreign", labels={"app": "other"}, ready=True, host="10.1.0.1"
            )
        )
        provisioner.seed(
            descriptor("dying", terminated=True, ready=True, host="10.1.0.2")
        )
        controller = make_controller(provisioner, min_instances=0)

        result = await controller.reconciliation.run()

        assert result.discovered == []
        assert "foreign" not in controller.registry
        assert "dying" not in controller.registry
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_discovery_failure_proceeds_with_empty_registry(self):
        provisioner = InMemoryProvisioner()
        provisioner.seed(descriptor("existing", ready=True, host="10.1.0.1"))
        provisioner.fail_next("list")
        controller = make_controller(provisioner, min_instances=2)

        result = await controller.reconciliation.run()

        assert result.discovery_failed is True
        assert result.errors
        assert len(result.created) == 2
        assert "existing" not in controller.registry
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_create_failures_collected(self):
        provisioner = InMemoryProvisioner()
        provisioner.fail_next("create")
        controller = make_controller(provisioner, min_instances=2)

        result = await controller.reconciliation.run()

        assert len(result.created) == 1
        assert len(result.errors) == 1
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_start_reports_ready_after_reconciliation(self):
        provisioner = InMemoryProvisioner()
        controller = make_controller(provisioner, min_instances=2)

        result = await controller.start()

        assert controller.is_ready
        assert controller.last_reconciliation is result
        assert len(provisioner.create_calls()) == 2
        await controller.shutdown()
