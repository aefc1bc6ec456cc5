"""Unit tests for the in-memory provisioner."""

import pytest

from serverpool.provisioners.base import (
    MANAGED_LABELS,
    InstanceDescriptor,
    InstanceTemplate,
    parse_selector,
    selector_for,
)
from serverpool.provisioners.memory import InMemoryProvisioner
from serverpool.utils.errors import ProvisionerUnavailableError


def spec_for(instance_id: str):
    return InstanceTemplate().for_instance(instance_id, capacity=50)


class TestSelectors:
    def test_selector_round_trip(self) -> None:
        selector = selector_for(MANAGED_LABELS)

        assert selector == "app=game-server-instance,managed-by=game-server-controller"
        assert parse_selector(selector) == MANAGED_LABELS

    def test_parse_ignores_blank_terms(self) -> None:
        assert parse_selector(" app = x ,, ") == {"app": "x"}

    def test_template_spec_carries_capacity(self) -> None:
        spec = spec_for("gs-1")

        assert spec.instance_id == "gs-1"
        assert spec.capacity == 50
        assert spec.container_port == 3000
        assert spec.labels == MANAGED_LABELS


class TestInMemoryProvisioner:
    @pytest.mark.asyncio
    async def test_create_ready_immediately(self):
        provisioner = InMemoryProvisioner()

        handle = await provisioner.create(spec_for("gs-1"))
        described = await provisioner.describe("gs-1")

        assert handle.instance_id == "gs-1"
        assert described is not None
        assert described.ready
        assert described.host == "10.0.0.1"
        assert described.port == 3000

    @pytest.mark.asyncio
    async def test_create_not_ready_until_marked(self):
        provisioner = InMemoryProvisioner(auto_ready=False)
        await provisioner.create(spec_for("gs-1"))

        before = await provisioner.describe("gs-1")
        provisioner.mark_ready("gs-1", port=4000)
        after = await provisioner.describe("gs-1")

        assert before is not None and not before.ready and before.host is None
        assert after is not None and after.ready and after.port == 4000

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self):
        provisioner = InMemoryProvisioner()
        await provisioner.create(spec_for("gs-1"))

        await provisioner.delete("gs-1")
        await provisioner.delete("gs-1")

        assert await provisioner.describe("gs-1") is None
        assert provisioner.delete_calls() == ["gs-1", "gs-1"]

    @pytest.mark.asyncio
    async def test_list_filters_by_selector(self):
        provisioner = InMemoryProvisioner()
        await provisioner.create(spec_for("gs-1"))
        provisioner.seed(InstanceDescriptor(instance_id="other", labels={"app": "x"}))

        listed = await provisioner.list(selector_for(MANAGED_LABELS))

        assert [d.instance_id for d in listed] == ["gs-1"]

    @pytest.mark.asyncio
    async def test_fail_next_is_consumed(self):
        provisioner = InMemoryProvisioner()
        provisioner.fail_next("create")

        with pytest.raises(ProvisionerUnavailableError) as exc_info:
            await provisioner.create(spec_for("gs-1"))
        await provisioner.create(spec_for("gs-2"))

        assert exc_info.value.operation == "create"
        assert exc_info.value.instance_id == "gs-1"
        assert list(provisioner.instances) == ["gs-2"]

    @pytest.mark.asyncio
    async def test_unavailable_fails_every_call(self):
        provisioner = InMemoryProvisioner()
        provisioner.unavailable = True

        with pytest.raises(ProvisionerUnavailableError):
            await provisioner.list("app=x")
        with pytest.raises(ProvisionerUnavailableError):
            await provisioner.describe("gs-1")
