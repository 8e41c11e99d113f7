"""
Resource kind registry.

Every kind the controller reads, writes or watches is described once here.
Controllers, informers and event routers are keyed by these descriptors
instead of inspecting object types at runtime: a descriptor knows its API
path and how to turn a raw JSON object into the value handlers receive
(a pydantic model for our custom resources, a plain dict for native ones).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from .constants import API_VERSION
from .v1beta1 import (
    Environment,
    KubeObject,
    Tenant,
    TenantGateway,
    TenantNetworkPolicy,
    TenantResourceQuota,
)


@dataclass(frozen=True)
class ResourceKind:
    """Descriptor of one API resource type."""

    kind: str
    api_version: str
    plural: str
    namespaced: bool = False
    model: type[KubeObject] | None = None

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    def decode(self, raw: dict[str, Any]) -> Any:
        """Build the handler-facing value from a raw API object."""
        if self.model is not None:
            return self.model.model_validate(raw)
        return copy.deepcopy(raw)

    def encode(self, obj: Any) -> dict[str, Any]:
        """Build the raw API body from a model or dict."""
        if isinstance(obj, KubeObject):
            body = obj.to_dict()
        else:
            body = copy.deepcopy(obj)
        body.setdefault("apiVersion", self.api_version)
        body.setdefault("kind", self.kind)
        return body

    def __str__(self) -> str:
        return self.kind


KINDS: dict[str, ResourceKind] = {}


def register(kind: ResourceKind) -> ResourceKind:
    if kind.kind in KINDS:
        raise ValueError(f"resource kind {kind.kind} registered twice")
    KINDS[kind.kind] = kind
    return kind


TENANT = register(ResourceKind("Tenant", API_VERSION, "tenants", model=Tenant))
ENVIRONMENT = register(
    ResourceKind("Environment", API_VERSION, "environments", model=Environment)
)
TENANT_RESOURCE_QUOTA = register(
    ResourceKind(
        "TenantResourceQuota",
        API_VERSION,
        "tenantresourcequotas",
        model=TenantResourceQuota,
    )
)
TENANT_NETWORK_POLICY = register(
    ResourceKind(
        "TenantNetworkPolicy",
        API_VERSION,
        "tenantnetworkpolicies",
        model=TenantNetworkPolicy,
    )
)
TENANT_GATEWAY = register(
    ResourceKind("TenantGateway", API_VERSION, "tenantgateways", model=TenantGateway)
)

NAMESPACE = register(ResourceKind("Namespace", "v1", "namespaces"))
NODE = register(ResourceKind("Node", "v1", "nodes"))
RESOURCE_QUOTA = register(
    ResourceKind("ResourceQuota", "v1", "resourcequotas", namespaced=True)
)
LIMIT_RANGE = register(ResourceKind("LimitRange", "v1", "limitranges", namespaced=True))
EVENT = register(ResourceKind("Event", "v1", "events", namespaced=True))
NETWORK_POLICY = register(
    ResourceKind(
        "NetworkPolicy", "networking.k8s.io/v1", "networkpolicies", namespaced=True
    )
)
LEASE = register(
    ResourceKind("Lease", "coordination.k8s.io/v1", "leases", namespaced=True)
)
CUSTOM_RESOURCE_DEFINITION = register(
    ResourceKind(
        "CustomResourceDefinition",
        "apiextensions.k8s.io/v1",
        "customresourcedefinitions",
    )
)
