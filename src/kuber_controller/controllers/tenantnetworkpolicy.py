"""
TenantNetworkPolicy reconciler.

Turns the isolation flags of a TenantNetworkPolicy into native
NetworkPolicies in the namespaces of the tenant's Environments:

* ``tenantIsolated``: ``kuber-tenant-isolation`` admits ingress from any
  namespace of the same tenant;
* ``projectNetworkPolicies[].name``: ``kuber-project-isolation`` admits
  ingress from namespaces of the same tenant and project;
* ``environmentNetworkPolicies[{project, name}]``: ``kuber-environment-isolation``
  admits ingress from the namespace itself only.

NetworkPolicies are additive, so a namespace covered by several scopes gets
only the narrowest one. When the nginx ingress controller is installed the
gateway namespace is admitted as well, so tenant ingresses keep working.

Every policy the reconciler manages carries the tenant label; the set of
tenant-labeled policies is converged to the desired set (create missing,
update divergent, delete the rest).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from ..api.constants import (
    COMPONENT_NGINX,
    FINALIZER_NETWORK_POLICY,
    LABEL_ENVIRONMENT,
    LABEL_PROJECT,
    LABEL_TENANT,
    NAMESPACE_GATEWAY,
    REASON_FAILED_CREATE,
    REASON_FAILED_DELETE,
    REASON_FAILED_UPDATE,
)
from ..api.kinds import ENVIRONMENT, NETWORK_POLICY, NODE, TENANT_NETWORK_POLICY
from ..api.v1beta1 import Environment, TenantNetworkPolicy
from ..handlers import EnvironmentHandler, NodeHandler
from ..kube.client import ResourceClient
from ..kube.errors import ApiError, NotFoundError
from ..kube.events import EventRecorder
from ..kube.objects import add_finalizer, label_changed, merge_labels, metadata, remove_finalizer
from ..kube.retry import RetryConfig, retry_on_conflict
from ..runtime.controller import Reconciler
from ..runtime.manager import Manager
from ..runtime.request import DONE, Request, Result
from .pluginstatus import PluginStatus

logger = structlog.get_logger(__name__)

POLICY_TENANT = "kuber-tenant-isolation"
POLICY_PROJECT = "kuber-project-isolation"
POLICY_ENVIRONMENT = "kuber-environment-isolation"

NAMESPACE_NAME_LABEL = "kubernetes.io/metadata.name"

CREATE = "create"
UPDATE = "update"
DELETE = "delete"

FAILURE_REASONS = {
    CREATE: REASON_FAILED_CREATE,
    UPDATE: REASON_FAILED_UPDATE,
    DELETE: REASON_FAILED_DELETE,
}


@dataclass
class PolicyAction:
    action: str
    namespace: str
    name: str
    body: dict[str, Any]


def tenant_of(tnp: TenantNetworkPolicy) -> str:
    return tnp.metadata.labels.get(LABEL_TENANT) or tnp.spec.tenant or tnp.name


def isolation_scope(tnp: TenantNetworkPolicy, env: Environment) -> str | None:
    """Narrowest isolation scope covering the namespace of *env*, if any."""
    spec = tnp.spec
    if any(
        item.name == env.name and (not item.project or item.project == env.spec.project)
        for item in spec.environment_network_policies
    ):
        return POLICY_ENVIRONMENT
    if any(item.name == env.spec.project for item in spec.project_network_policies):
        return POLICY_PROJECT
    if spec.tenant_isolated:
        return POLICY_TENANT
    return None


def desired_policy(
    scope: str, tenant: str, env: Environment, gateway_namespace: str | None
) -> dict[str, Any]:
    namespace = env.spec.namespace
    if scope == POLICY_TENANT:
        peers = [{"namespaceSelector": {"matchLabels": {LABEL_TENANT: tenant}}}]
    elif scope == POLICY_PROJECT:
        peers = [
            {
                "namespaceSelector": {
                    "matchLabels": {LABEL_TENANT: tenant, LABEL_PROJECT: env.spec.project}
                }
            }
        ]
    else:
        peers = [{"podSelector": {}}]
    if gateway_namespace:
        peers.append(
            {"namespaceSelector": {"matchLabels": {NAMESPACE_NAME_LABEL: gateway_namespace}}}
        )
    return {
        "apiVersion": NETWORK_POLICY.api_version,
        "kind": NETWORK_POLICY.kind,
        "metadata": {
            "name": scope,
            "namespace": namespace,
            "labels": {
                LABEL_TENANT: tenant,
                LABEL_PROJECT: env.spec.project,
                LABEL_ENVIRONMENT: env.name,
            },
        },
        "spec": {
            "podSelector": {},
            "policyTypes": ["Ingress"],
            "ingress": [{"from": peers}],
        },
    }


def plan_actions(
    desired: dict[tuple[str, str], dict[str, Any]],
    existing: list[dict[str, Any]],
) -> list[PolicyAction]:
    """Diff desired policies against the tenant-labeled ones in the cluster."""
    actions = []
    seen = set()
    for current in existing:
        meta = current.get("metadata") or {}
        key = (meta.get("namespace") or "", meta.get("name", ""))
        seen.add(key)
        wanted = desired.get(key)
        if wanted is None:
            actions.append(PolicyAction(DELETE, key[0], key[1], current))
            continue
        wanted_labels = wanted["metadata"]["labels"]
        if current.get("spec") == wanted["spec"] and not label_changed(
            meta.get("labels"), wanted_labels
        ):
            continue
        updated = dict(current)
        updated["metadata"] = dict(meta, labels=merge_labels(meta.get("labels"), wanted_labels))
        updated["spec"] = wanted["spec"]
        actions.append(PolicyAction(UPDATE, key[0], key[1], updated))
    for key, wanted in sorted(desired.items()):
        if key not in seen:
            actions.append(PolicyAction(CREATE, key[0], key[1], wanted))
    return actions


class TenantNetworkPolicyReconciler(Reconciler):
    def __init__(
        self,
        client: ResourceClient,
        recorder: EventRecorder,
        plugins: PluginStatus,
        gateway_namespace: str = NAMESPACE_GATEWAY,
        retry_config: RetryConfig | None = None,
    ):
        self.client = client
        self.recorder = recorder
        self.plugins = plugins
        self.gateway_namespace = gateway_namespace
        self.retry_config = retry_config

    def reconcile(self, request: Request) -> Result:
        try:
            tnp = self.client.get(TENANT_NETWORK_POLICY, request.name)
        except NotFoundError:
            return DONE

        if tnp.deleting:
            return self.finalize(tnp)

        tenant = tenant_of(tnp)
        for action in plan_actions(self.desired(tnp, tenant), self.existing(tenant)):
            self.apply(tnp, action)
        self.ensure_finalizer(tnp)
        return DONE

    def desired(
        self, tnp: TenantNetworkPolicy, tenant: str
    ) -> dict[tuple[str, str], dict[str, Any]]:
        gateway = None
        if self.plugins.component_enabled(COMPONENT_NGINX):
            gateway = self.gateway_namespace
        policies = {}
        for env in self.client.list(ENVIRONMENT, labels={LABEL_TENANT: tenant}):
            if not env.spec.namespace:
                continue
            scope = isolation_scope(tnp, env)
            if scope is None:
                continue
            policies[(env.spec.namespace, scope)] = desired_policy(scope, tenant, env, gateway)
        return policies

    def existing(self, tenant: str) -> list[dict[str, Any]]:
        return self.client.list(NETWORK_POLICY, labels={LABEL_TENANT: tenant})

    def apply(self, tnp: TenantNetworkPolicy, action: PolicyAction) -> None:
        try:
            if action.action == CREATE:
                self.client.create(NETWORK_POLICY, action.body)
            elif action.action == UPDATE:
                self.client.update(NETWORK_POLICY, action.body)
            else:
                self.client.delete(NETWORK_POLICY, action.name, action.namespace)
        except NotFoundError:
            if action.action != DELETE:
                raise
        except ApiError as exc:
            self.recorder.warning(
                tnp,
                FAILURE_REASONS[action.action],
                f"Failed to {action.action} NetworkPolicy {action.namespace}/{action.name}: {exc}",
            )
            raise
        logger.info(
            "tenant_network_policy.applied",
            tenant_network_policy=tnp.name,
            action=action.action,
            namespace=action.namespace,
            policy=action.name,
        )

    def ensure_finalizer(self, tnp: TenantNetworkPolicy) -> None:
        if FINALIZER_NETWORK_POLICY in tnp.metadata.finalizers:
            return

        def write() -> None:
            current = self.client.get(TENANT_NETWORK_POLICY, tnp.name, live=True)
            if add_finalizer(current, FINALIZER_NETWORK_POLICY):
                self.client.update(TENANT_NETWORK_POLICY, current)

        retry_on_conflict(write, self.retry_config)

    def finalize(self, tnp: TenantNetworkPolicy) -> Result:
        if FINALIZER_NETWORK_POLICY not in tnp.metadata.finalizers:
            return DONE
        for policy in self.existing(tenant_of(tnp)):
            meta = metadata(policy)
            try:
                self.client.delete(NETWORK_POLICY, meta.get("name", ""), meta.get("namespace"))
            except NotFoundError:
                continue
            except ApiError as exc:
                self.recorder.warning(
                    tnp,
                    REASON_FAILED_DELETE,
                    f"Failed to delete NetworkPolicy {meta.get('name')}: {exc}",
                )
                raise

        def release() -> None:
            current = self.client.get(TENANT_NETWORK_POLICY, tnp.name, live=True)
            changed = remove_finalizer(current, FINALIZER_NETWORK_POLICY)
            if current.metadata.owner_references:
                current.metadata.owner_references = []
                changed = True
            if changed:
                self.client.update(TENANT_NETWORK_POLICY, current)

        try:
            retry_on_conflict(release, self.retry_config)
        except NotFoundError:
            return DONE
        logger.info("tenant_network_policy.finalized", tenant_network_policy=tnp.name)
        return DONE

    def setup_with_manager(self, mgr: Manager) -> None:
        mgr.new_controller(
            "tenantnetworkpolicy",
            self,
            TENANT_NETWORK_POLICY,
            watches=[
                (NODE, NodeHandler(mgr.client)),
                (ENVIRONMENT, EnvironmentHandler(fields=("tenant", "project", "namespace"))),
            ],
            readiness=self.plugins,
        )
