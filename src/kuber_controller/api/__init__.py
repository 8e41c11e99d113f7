"""API constants, object models and the resource kind registry."""

from .kinds import (
    CUSTOM_RESOURCE_DEFINITION,
    ENVIRONMENT,
    EVENT,
    KINDS,
    LEASE,
    LIMIT_RANGE,
    NAMESPACE,
    NETWORK_POLICY,
    NODE,
    RESOURCE_QUOTA,
    TENANT,
    TENANT_GATEWAY,
    TENANT_NETWORK_POLICY,
    TENANT_RESOURCE_QUOTA,
    ResourceKind,
)
from .v1beta1 import (
    Environment,
    KubeObject,
    ObjectMeta,
    OwnerReference,
    Tenant,
    TenantGateway,
    TenantNetworkPolicy,
    TenantResourceQuota,
)

__all__ = [
    "CUSTOM_RESOURCE_DEFINITION",
    "ENVIRONMENT",
    "EVENT",
    "KINDS",
    "LEASE",
    "LIMIT_RANGE",
    "NAMESPACE",
    "NETWORK_POLICY",
    "NODE",
    "RESOURCE_QUOTA",
    "TENANT",
    "TENANT_GATEWAY",
    "TENANT_NETWORK_POLICY",
    "TENANT_RESOURCE_QUOTA",
    "ResourceKind",
    "Environment",
    "KubeObject",
    "ObjectMeta",
    "OwnerReference",
    "Tenant",
    "TenantGateway",
    "TenantNetworkPolicy",
    "TenantResourceQuota",
]
