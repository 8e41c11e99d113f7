"""
go.kuber.io/v1beta1 object models.

The custom resources are modelled with pydantic. Field names are snake_case
in Python and camelCase on the wire; unknown fields are kept so that an
object read from the API server can be written back without losing data.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .constants import API_VERSION

ResourceList = dict[str, str]


class KubeModel(BaseModel):
    """Base model with Kubernetes JSON conventions."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )


class OwnerReference(KubeModel):
    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool | None = None
    block_owner_deletion: bool | None = None


class ObjectMeta(KubeModel):
    name: str = ""
    namespace: str | None = None
    uid: str | None = None
    resource_version: str | None = None
    generation: int | None = None
    creation_timestamp: str | None = None
    deletion_timestamp: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list)

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def _null_map(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("finalizers", "owner_references", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


class KubeObject(KubeModel):
    """Common envelope of every custom resource."""

    api_version: str = API_VERSION
    kind: str = ""
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def deleting(self) -> bool:
        return bool(self.metadata.deletion_timestamp)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# Tenant


class TenantSpec(KubeModel):
    tenant_name: str = ""
    admin: list[str] = Field(default_factory=list)
    members: list[str] = Field(default_factory=list)


class TenantStatus(KubeModel):
    environments: list[str] = Field(default_factory=list)
    namespaces: list[str] = Field(default_factory=list)
    last_update_time: str | None = None


class Tenant(KubeObject):
    kind: str = "Tenant"
    spec: TenantSpec = Field(default_factory=TenantSpec)
    status: TenantStatus = Field(default_factory=TenantStatus)


# Environment


class EnvironmentSpec(KubeModel):
    tenant: str = ""
    project: str = ""
    namespace: str = ""
    delete_policy: str = ""
    resource_quota: ResourceList = Field(default_factory=dict)
    limit_range: list[dict[str, Any]] = Field(default_factory=list)
    resource_quota_name: str = ""


class EnvironmentStatus(KubeModel):
    last_update_time: str | None = None


class Environment(KubeObject):
    kind: str = "Environment"
    spec: EnvironmentSpec = Field(default_factory=EnvironmentSpec)
    status: EnvironmentStatus = Field(default_factory=EnvironmentStatus)


# TenantResourceQuota


class TenantResourceQuotaSpec(KubeModel):
    hard: ResourceList = Field(default_factory=dict)


class TenantResourceQuotaStatus(KubeModel):
    hard: ResourceList = Field(default_factory=dict)
    allocated: ResourceList = Field(default_factory=dict)
    used: ResourceList = Field(default_factory=dict)
    last_update_time: str | None = None


class TenantResourceQuota(KubeObject):
    kind: str = "TenantResourceQuota"
    spec: TenantResourceQuotaSpec = Field(default_factory=TenantResourceQuotaSpec)
    status: TenantResourceQuotaStatus = Field(default_factory=TenantResourceQuotaStatus)


# TenantNetworkPolicy


class ProjectNetworkPolicy(KubeModel):
    name: str = ""


class EnvironmentNetworkPolicy(KubeModel):
    project: str = ""
    name: str = ""


class TenantNetworkPolicySpec(KubeModel):
    tenant: str = ""
    tenant_isolated: bool = False
    project_network_policies: list[ProjectNetworkPolicy] = Field(default_factory=list)
    environment_network_policies: list[EnvironmentNetworkPolicy] = Field(
        default_factory=list
    )


class TenantNetworkPolicyStatus(KubeModel):
    last_update_time: str | None = None


class TenantNetworkPolicy(KubeObject):
    kind: str = "TenantNetworkPolicy"
    spec: TenantNetworkPolicySpec = Field(default_factory=TenantNetworkPolicySpec)
    status: TenantNetworkPolicyStatus = Field(default_factory=TenantNetworkPolicyStatus)


# TenantGateway


class TenantGatewaySpec(KubeModel):
    type: str = ""
    replicas: int | None = None
    ingress_class: str = ""
    image: dict[str, Any] | None = None
    service: dict[str, Any] | None = None
    workload: dict[str, Any] | None = None


class TenantGatewayStatus(KubeModel):
    available_replicas: int = 0
    ports: list[dict[str, Any]] = Field(default_factory=list)


class TenantGateway(KubeObject):
    kind: str = "TenantGateway"
    spec: TenantGatewaySpec = Field(default_factory=TenantGatewaySpec)
    status: TenantGatewayStatus = Field(default_factory=TenantGatewayStatus)
