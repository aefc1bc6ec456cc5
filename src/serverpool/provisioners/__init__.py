"""Instance provisioners for the orchestration platform.

This package provides the provisioner contract plus a Kubernetes
implementation and an in-memory implementation for local runs and tests.
"""

from serverpool.provisioners.base import (
    MANAGED_LABELS,
    InstanceDescriptor,
    InstanceHandle,
    InstanceProvisioner,
    InstanceSpec,
    InstanceTemplate,
    ResourceSpec,
    parse_selector,
    selector_for,
)
from serverpool.provisioners.memory import InMemoryProvisioner

__all__ = [
    "MANAGED_LABELS",
    "InMemoryProvisioner",
    "InstanceDescriptor",
    "InstanceHandle",
    "InstanceProvisioner",
    "InstanceSpec",
    "InstanceTemplate",
    "ResourceSpec",
    "parse_selector",
    "selector_for",
]
