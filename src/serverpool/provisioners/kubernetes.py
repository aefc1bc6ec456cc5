"""Kubernetes provisioner: one Deployment per game server instance.

Uses the official synchronous ``kubernetes`` client. Every API call runs
in a worker thread through ``asyncio.to_thread`` so the controller's event
loop never blocks on the cluster.
"""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from serverpool.provisioners.base import (
    InstanceDescriptor,
    InstanceHandle,
    InstanceSpec,
)
from serverpool.utils.errors import ProvisionerUnavailableError
from serverpool.utils.telemetry import get_logger

T = TypeVar("T")

SERVER_ID_LABEL = "server-id"


class KubernetesProvisioner:
    """Creates, deletes and inspects game server Deployments in a namespace."""

    def __init__(
        self,
        namespace: str = "game-servers",
        in_cluster: bool | None = None,
        apps_api: Any = None,
        core_api: Any = None,
    ):
        """Initialize the provisioner.

        Args:
            namespace: Namespace holding the game server Deployments
            in_cluster: Force in-cluster (True) or kubeconfig (False) loading;
                None tries in-cluster first and falls back to kubeconfig
            apps_api: Pre-built AppsV1Api, mainly for tests
            core_api: Pre-built CoreV1Api, mainly for tests
        """
        self.namespace = namespace
        self.in_cluster = in_cluster
        self._apps_api = apps_api
        self._core_api = core_api
        self._logger = get_logger(
            "serverpool.provisioner.kubernetes", namespace=namespace
        )

    def _load_config(self) -> None:
        if self.in_cluster is True:
            config.load_incluster_config()
        elif self.in_cluster is False:
            config.load_kube_config()
        else:
            try:
                config.load_incluster_config()
            except config.ConfigException:
                config.load_kube_config()

    @property
    def apps_api(self) -> Any:
        """Lazy-load the AppsV1 client."""
        if self._apps_api is None:
            self._load_config()
            self._apps_api = client.AppsV1Api()
        return self._apps_api

    @property
    def core_api(self) -> Any:
        """Lazy-load the CoreV1 client."""
        if self._core_api is None:
            self._load_config()
            self._core_api = client.CoreV1Api()
        return self._core_api

    async def _call(
        self,
        operation: str,
        func: Callable[..., T],
        *args: Any,
        instance_id: str | None = None,
        **kwargs: Any,
    ) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ApiException as e:
            raise ProvisionerUnavailableError(
                operation, f"status={e.status} reason={e.reason}", instance_id
            ) from e
        except Exception as e:
            raise ProvisionerUnavailableError(operation, str(e), instance_id) from e

    def build_deployment(self, spec: InstanceSpec) -> client.V1Deployment:
        """Build the Deployment manifest for one instance."""
        pod_labels = {**spec.labels, SERVER_ID_LABEL: spec.instance_id}
        env = {"SERVER_ID": spec.instance_id, "MAX_PLAYERS": str(spec.capacity)}
        env.update(spec.env)

        probe_action = client.V1HTTPGetAction(
            path=spec.health_path, port=spec.container_port
        )

        container = client.V1Container(
            name="game-server",
            image=spec.image,
            ports=[
                client.V1ContainerPort(
                    container_port=spec.container_port, name="game-port"
                )
            ],
            env=[client.V1EnvVar(name=k, value=v) for k, v in env.items()],
            resources=client.V1ResourceRequirements(
                requests={"cpu": spec.requests.cpu, "memory": spec.requests.memory},
                limits={"cpu": spec.limits.cpu, "memory": spec.limits.memory},
            ),
            readiness_probe=client.V1Probe(
                http_get=probe_action, initial_delay_seconds=10, period_seconds=5
            ),
            liveness_probe=client.V1Probe(
                http_get=probe_action, initial_delay_seconds=30, period_seconds=10
            ),
        )

        return client.V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=client.V1ObjectMeta(
                name=spec.instance_id,
                namespace=self.namespace,
                labels=dict(spec.labels),
            ),
            spec=client.V1DeploymentSpec(
                replicas=1,
                selector=client.V1LabelSelector(
                    match_labels={
                        "app": spec.labels.get("app", "game-server-instance"),
                        SERVER_ID_LABEL: spec.instance_id,
                    }
                ),
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(labels=pod_labels),
                    spec=client.V1PodSpec(containers=[container]),
                ),
            ),
        )

    async def create(self, spec: InstanceSpec) -> InstanceHandle:
        deployment = self.build_deployment(spec)
        await self._call(
            "create",
            self.apps_api.create_namespaced_deployment,
            namespace=self.namespace,
            body=deployment,
            instance_id=spec.instance_id,
        )
        self._logger.info("Deployment created", server_id=spec.instance_id)
        return InstanceHandle(instance_id=spec.instance_id)

    async def delete(self, instance_id: str) -> None:
        try:
            await asyncio.to_thread(
                self.apps_api.delete_namespaced_deployment,
                name=instance_id,
                namespace=self.namespace,
                body=client.V1DeleteOptions(propagation_policy="Foreground"),
            )
        except ApiException as e:
            if e.status == 404:
                self._logger.info("Deployment already deleted", server_id=instance_id)
                return
            raise ProvisionerUnavailableError(
                "delete", f"status={e.status} reason={e.reason}", instance_id
            ) from e
        except Exception as e:
            raise ProvisionerUnavailableError("delete", str(e), instance_id) from e
        self._logger.info("Deployment deleted", server_id=instance_id)

    async def list(self, label_selector: str) -> list[InstanceDescriptor]:
        pods = await self._call(
            "list",
            self.core_api.list_namespaced_pod,
            namespace=self.namespace,
            label_selector=label_selector,
        )
        descriptors: dict[str, InstanceDescriptor] = {}
        for pod in pods.items:
            descriptor = self._describe_pod(pod)
            current = descriptors.get(descriptor.instance_id)
            # A rolling Deployment can briefly have two pods; prefer the ready one
            if current is None or (descriptor.ready and not current.ready):
                descriptors[descriptor.instance_id] = descriptor
        return list(descriptors.values())

    async def describe(self, instance_id: str) -> InstanceDescriptor | None:
        try:
            deployment = await asyncio.to_thread(
                self.apps_api.read_namespaced_deployment,
                name=instance_id,
                namespace=self.namespace,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise ProvisionerUnavailableError(
                "describe", f"status={e.status} reason={e.reason}", instance_id
            ) from e
        except Exception as e:
            raise ProvisionerUnavailableError("describe", str(e), instance_id) from e

        pods = await self._call(
            "describe",
            self.core_api.list_namespaced_pod,
            namespace=self.namespace,
            label_selector=f"{SERVER_ID_LABEL}={instance_id}",
            instance_id=instance_id,
        )
        for pod in pods.items:
            descriptor = self._describe_pod(pod)
            if descriptor.ready:
                return descriptor

        created = deployment.metadata.creation_timestamp
        return InstanceDescriptor(
            instance_id=instance_id,
            ready=False,
            terminated=deployment.metadata.deletion_timestamp is not None,
            labels=dict(deployment.metadata.labels or {}),
            **({"created_at": created.timestamp()} if created else {}),
        )

    def _describe_pod(self, pod: Any) -> InstanceDescriptor:
        labels = dict(pod.metadata.labels or {})
        instance_id = labels.get(SERVER_ID_LABEL, pod.metadata.name)
        status = pod.status
        phase = status.phase if status else None

        ready = phase == "Running" and bool(status.container_statuses) and all(
            container.ready for container in status.container_statuses
        )

        port = None
        for container in pod.spec.containers or []:
            for container_port in container.ports or []:
                port = container_port.container_port
                break
            if port is not None:
                break

        created = pod.metadata.creation_timestamp
        return InstanceDescriptor(
            instance_id=instance_id,
            ready=ready,
            terminated=phase in ("Succeeded", "Failed")
            or pod.metadata.deletion_timestamp is not None,
            host=status.pod_ip if status else None,
            port=port,
            labels=labels,
            **({"created_at": created.timestamp()} if created else {}),
        )

    async def close(self) -> None:
        for api in (self._apps_api, self._core_api):
            if api is not None and getattr(api, "api_client", None) is not None:
                await asyncio.to_thread(api.api_client.close)
        self._logger.info("Kubernetes provisioner closed")
