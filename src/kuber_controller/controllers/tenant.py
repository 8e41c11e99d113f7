"""
Tenant reconciler.

An active Tenant owns one TenantResourceQuota and one TenantNetworkPolicy
(both named after it), carries four finalizers and reports the Environments
labeled with it in its status.

Deleting a Tenant runs the cleanup steps in a fixed order, each guarded by
its own finalizer and each persisted as soon as it is done, so a restart
resumes from whatever tokens remain:

1. ``environment``: delete the tenant's Environments and wait until they
   are gone;
2. ``resourcequota``: release and delete the TenantResourceQuota;
3. ``netWorkPolicy``: release and delete the TenantNetworkPolicy;
4. ``gateway``: delete the tenant's TenantGateways.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from ..api.constants import (
    FINALIZER_ENVIRONMENT,
    FINALIZER_GATEWAY,
    FINALIZER_NETWORK_POLICY,
    FINALIZER_RESOURCE_QUOTA,
    LABEL_TENANT,
    REASON_CREATED,
    REASON_DELETED,
    REASON_FAILED_CREATE_SUB_RESOURCE,
    REASON_FAILED_DELETE,
    REASON_FAILED_UPDATE,
    REASON_UPDATED,
)
from ..api.kinds import (
    ENVIRONMENT,
    TENANT,
    TENANT_GATEWAY,
    TENANT_NETWORK_POLICY,
    TENANT_RESOURCE_QUOTA,
    ResourceKind,
)
from ..api.v1beta1 import (
    KubeObject,
    ObjectMeta,
    OwnerReference,
    Tenant,
    TenantNetworkPolicy,
    TenantNetworkPolicySpec,
    TenantResourceQuota,
    TenantResourceQuotaSpec,
)
from ..handlers import EnvironmentHandler, TenantResourceQuotaHandler
from ..kube.client import ResourceClient
from ..kube.errors import AlreadyExistsError, ApiError, ConflictError, NotFoundError
from ..kube.events import EventRecorder
from ..kube.objects import (
    add_finalizer,
    controller_reference,
    exist_owner_ref,
    label_changed,
    merge_labels,
    now_rfc3339,
    remove_finalizer,
    set_controller_reference,
    string_sets_equal,
)
from ..kube.retry import RetryConfig, retry_on_conflict
from ..runtime.controller import Reconciler
from ..runtime.manager import Manager
from ..runtime.request import DONE, Request, Result

logger = structlog.get_logger(__name__)

TENANT_FINALIZERS = (
    FINALIZER_RESOURCE_QUOTA,
    FINALIZER_NETWORK_POLICY,
    FINALIZER_ENVIRONMENT,
    FINALIZER_GATEWAY,
)


def default_tenant_resource_quota() -> dict[str, str]:
    """All-zero ceilings a new tenant starts with."""
    return {"limits.cpu": "0", "limits.memory": "0Gi", "requests.storage": "0Gi"}


class TenantReconciler(Reconciler):
    def __init__(
        self,
        client: ResourceClient,
        recorder: EventRecorder,
        retry_config: RetryConfig | None = None,
        environment_wait: float = 2.0,
    ):
        self.client = client
        self.recorder = recorder
        self.retry_config = retry_config
        self.environment_wait = environment_wait

    def reconcile(self, request: Request) -> Result:
        log = logger.bind(tenant=request.name)
        try:
            tenant = self.client.get(TENANT, request.name)
        except NotFoundError:
            log.debug("tenant.not_found")
            return DONE

        if tenant.deleting:
            return self.finalize(tenant)

        owner = controller_reference(tenant)
        self.ensure_child(tenant, owner, TENANT_RESOURCE_QUOTA, self._new_resource_quota)
        self.ensure_child(tenant, owner, TENANT_NETWORK_POLICY, self._new_network_policy)
        self.ensure_finalizers(tenant)
        self.sync_status(tenant)
        return DONE

    # Active path

    def ensure_child(
        self,
        tenant: Tenant,
        owner: OwnerReference,
        kind: ResourceKind,
        build: Callable[[Tenant, OwnerReference], KubeObject],
    ) -> None:
        """Create the tenant-named child of *kind*, or repair its owner and labels."""
        labels = {LABEL_TENANT: tenant.name}
        try:
            cached = self.client.get(kind, tenant.name)
        except NotFoundError:
            self._create_child(tenant, owner, kind, build)
            return
        if exist_owner_ref(cached.metadata.owner_references, owner) and not label_changed(
            cached.metadata.labels, labels
        ):
            return

        def repair() -> bool:
            child = self.client.get(kind, tenant.name, live=True)
            changed = False
            if not exist_owner_ref(child.metadata.owner_references, owner):
                set_controller_reference(child, owner)
                changed = True
            if label_changed(child.metadata.labels, labels):
                child.metadata.labels = merge_labels(child.metadata.labels, labels)
                changed = True
            if changed:
                self.client.update(kind, child)
            return changed

        try:
            changed = retry_on_conflict(repair, self.retry_config)
        except NotFoundError:
            return
        except ConflictError:
            raise
        except ApiError as exc:
            self.recorder.warning(
                tenant,
                REASON_FAILED_UPDATE,
                f"Failed to update {kind.kind} for tenant {tenant.name}: {exc}",
            )
            raise
        if changed:
            logger.info("tenant.child_repaired", tenant=tenant.name, kind=kind.kind)
            self.recorder.normal(
                tenant, REASON_UPDATED, f"Successfully updated {kind.kind} for tenant {tenant.name}"
            )

    def _create_child(
        self,
        tenant: Tenant,
        owner: OwnerReference,
        kind: ResourceKind,
        build: Callable[[Tenant, OwnerReference], KubeObject],
    ) -> None:
        try:
            self.client.create(kind, build(tenant, owner))
        except AlreadyExistsError:
            # Created meanwhile; the next pass checks its owner and labels.
            return
        except ApiError as exc:
            self.recorder.warning(
                tenant,
                REASON_FAILED_CREATE_SUB_RESOURCE,
                f"Failed to create {kind.kind} for tenant {tenant.name}: {exc}",
            )
            raise
        logger.info("tenant.child_created", tenant=tenant.name, kind=kind.kind)
        self.recorder.normal(
            tenant, REASON_CREATED, f"Successfully created {kind.kind} for tenant {tenant.name}"
        )

    @staticmethod
    def _new_resource_quota(tenant: Tenant, owner: OwnerReference) -> TenantResourceQuota:
        return TenantResourceQuota(
            metadata=ObjectMeta(
                name=tenant.name,
                labels={LABEL_TENANT: tenant.name},
                owner_references=[owner],
            ),
            spec=TenantResourceQuotaSpec(hard=default_tenant_resource_quota()),
        )

    @staticmethod
    def _new_network_policy(tenant: Tenant, owner: OwnerReference) -> TenantNetworkPolicy:
        return TenantNetworkPolicy(
            metadata=ObjectMeta(
                name=tenant.name,
                labels={LABEL_TENANT: tenant.name},
                owner_references=[owner],
            ),
            spec=TenantNetworkPolicySpec(tenant=tenant.name, tenant_isolated=False),
        )

    def ensure_finalizers(self, tenant: Tenant) -> None:
        """Add every missing cleanup finalizer in a single write."""
        if all(token in tenant.metadata.finalizers for token in TENANT_FINALIZERS):
            return

        def add_missing() -> list[str]:
            current = self.client.get(TENANT, tenant.name, live=True)
            added = [token for token in TENANT_FINALIZERS if add_finalizer(current, token)]
            if added:
                self.client.update(TENANT, current)
            return added

        added = retry_on_conflict(add_missing, self.retry_config)
        if added:
            logger.info("tenant.finalizers_added", tenant=tenant.name, finalizers=added)

    def sync_status(self, tenant: Tenant) -> None:
        """Report the tenant's Environments and their namespaces, writing only on change."""
        environments = self.client.list(ENVIRONMENT, labels={LABEL_TENANT: tenant.name})
        names = [env.name for env in environments]
        namespaces = [env.spec.namespace for env in environments]
        if string_sets_equal(tenant.status.environments, names) and string_sets_equal(
            tenant.status.namespaces, namespaces
        ):
            return

        def write() -> bool:
            current = self.client.get(TENANT, tenant.name, live=True)
            status = current.status
            if string_sets_equal(status.environments, names) and string_sets_equal(
                status.namespaces, namespaces
            ):
                return False
            status.environments = names
            status.namespaces = namespaces
            status.last_update_time = now_rfc3339()
            self.client.update_status(TENANT, current)
            return True

        if retry_on_conflict(write, self.retry_config):
            logger.info(
                "tenant.status_updated",
                tenant=tenant.name,
                environments=len(names),
            )

    # Deleting path

    def finalize(self, tenant: Tenant) -> Result:
        name = tenant.name
        selector = {LABEL_TENANT: name}
        finalizers = set(tenant.metadata.finalizers)

        if FINALIZER_ENVIRONMENT in finalizers:
            self._step(
                tenant,
                ENVIRONMENT.kind,
                lambda: self.client.delete_collection(ENVIRONMENT, selector),
            )
            remaining = self.client.list(ENVIRONMENT, labels=selector)
            if remaining:
                logger.info(
                    "tenant.waiting_for_environments",
                    tenant=name,
                    remaining=[env.name for env in remaining],
                )
                return Result(requeue_after=self.environment_wait)
            self.drop_finalizer(name, FINALIZER_ENVIRONMENT)

        if FINALIZER_RESOURCE_QUOTA in finalizers:
            self._step(
                tenant,
                TENANT_RESOURCE_QUOTA.kind,
                lambda: self.release(TENANT_RESOURCE_QUOTA, name),
            )
            self.drop_finalizer(name, FINALIZER_RESOURCE_QUOTA)

        if FINALIZER_NETWORK_POLICY in finalizers:
            self._step(
                tenant,
                TENANT_NETWORK_POLICY.kind,
                lambda: self.release(TENANT_NETWORK_POLICY, name),
            )
            self.drop_finalizer(name, FINALIZER_NETWORK_POLICY)

        if FINALIZER_GATEWAY in finalizers:
            self._step(
                tenant,
                TENANT_GATEWAY.kind,
                lambda: self.client.delete_collection(TENANT_GATEWAY, selector),
            )
            self.drop_finalizer(name, FINALIZER_GATEWAY)

        logger.info("tenant.finalized", tenant=name)
        return DONE

    def _step(self, tenant: Tenant, what: str, action: Callable[[], None]) -> None:
        try:
            action()
        except NotFoundError:
            return
        except ApiError as exc:
            self.recorder.warning(
                tenant,
                REASON_FAILED_DELETE,
                f"Failed to delete {what} for tenant {tenant.name}: {exc}",
            )
            raise
        self.recorder.normal(tenant, REASON_DELETED, f"Deleted {what} for tenant {tenant.name}")

    def release(self, kind: ResourceKind, name: str) -> None:
        """Detach the tenant-named child from its owner and delete it."""
        self.client.patch(kind, name, {"metadata": {"ownerReferences": None}})
        self.client.delete(kind, name)

    def drop_finalizer(self, name: str, finalizer: str) -> None:
        def remove() -> None:
            current = self.client.get(TENANT, name, live=True)
            if remove_finalizer(current, finalizer):
                self.client.update(TENANT, current)

        try:
            retry_on_conflict(remove, self.retry_config)
        except NotFoundError:
            return
        logger.info("tenant.finalizer_removed", tenant=name, finalizer=finalizer)

    def setup_with_manager(self, mgr: Manager) -> None:
        mgr.new_controller(
            "tenant",
            self,
            TENANT,
            watches=[
                (ENVIRONMENT, EnvironmentHandler()),
                (TENANT_RESOURCE_QUOTA, TenantResourceQuotaHandler()),
            ],
        )
