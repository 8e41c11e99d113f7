"""
TenantResourceQuota reconciler.

Sums the ``status.hard`` and ``status.used`` of every native ResourceQuota
labeled with the tenant, across all namespaces, into the TenantResourceQuota
status. The status is only written when the sums moved; a status write is
itself a watch event, so writing unconditionally would reconcile forever.
"""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from ..api.constants import LABEL_TENANT
from ..api.kinds import RESOURCE_QUOTA, TENANT_RESOURCE_QUOTA
from ..api.v1beta1 import TenantResourceQuota
from ..handlers import ResourceQuotaHandler
from ..kube.client import ResourceClient
from ..kube.errors import NotFoundError
from ..kube.objects import now_rfc3339
from ..kube.quantity import Quantity, add_into, semantic_equal, to_resource_list, zero_list
from ..kube.retry import RetryConfig, retry_on_conflict
from ..runtime.controller import Reconciler
from ..runtime.manager import Manager
from ..runtime.request import DONE, Request, Result

logger = structlog.get_logger(__name__)

REQUESTS_STORAGE = "requests.storage"
LIMITS_STORAGE = "limits.storage"


def fix_storage_name(totals: dict[str, Quantity]) -> dict[str, Quantity]:
    """Report storage requests under ``limits.storage`` as well."""
    if REQUESTS_STORAGE in totals:
        totals[LIMITS_STORAGE] = totals[REQUESTS_STORAGE]
    return totals


def aggregate(
    hard_names: Mapping[str, str], quotas: list[dict]
) -> tuple[dict[str, str], dict[str, str]]:
    """Return ``(hard, used)`` summed over *quotas*, seeded with zeros for *hard_names*."""
    hard = zero_list(hard_names)
    used = zero_list(hard_names)
    for quota in quotas:
        status = quota.get("status") or {}
        add_into(used, status.get("used"))
        add_into(hard, status.get("hard"))
    return (
        to_resource_list(fix_storage_name(hard)),
        to_resource_list(fix_storage_name(used)),
    )


def status_matches(trq: TenantResourceQuota, hard: dict[str, str], used: dict[str, str]) -> bool:
    status = trq.status
    return (
        semantic_equal(status.hard, hard)
        and semantic_equal(status.allocated, hard)
        and semantic_equal(status.used, used)
    )


class TenantResourceQuotaReconciler(Reconciler):
    def __init__(self, client: ResourceClient, retry_config: RetryConfig | None = None):
        self.client = client
        self.retry_config = retry_config

    def reconcile(self, request: Request) -> Result:
        log = logger.bind(tenant_resource_quota=request.name)
        try:
            trq = self.client.get(TENANT_RESOURCE_QUOTA, request.name)
        except NotFoundError:
            return DONE

        quotas = self.client.list(RESOURCE_QUOTA, labels={LABEL_TENANT: trq.name})
        hard, used = aggregate(trq.spec.hard, quotas)
        if status_matches(trq, hard, used):
            return DONE

        def write() -> bool:
            current = self.client.get(TENANT_RESOURCE_QUOTA, trq.name, live=True)
            if status_matches(current, hard, used):
                return False
            current.status.hard = hard
            current.status.allocated = dict(hard)
            current.status.used = used
            current.status.last_update_time = now_rfc3339()
            self.client.update_status(TENANT_RESOURCE_QUOTA, current)
            return True

        try:
            written = retry_on_conflict(write, self.retry_config)
        except NotFoundError:
            return DONE
        if written:
            log.info(
                "tenant_resource_quota.status_updated", quotas=len(quotas), hard=hard, used=used
            )
        return DONE

    def setup_with_manager(self, mgr: Manager) -> None:
        mgr.new_controller(
            "tenantresourcequota",
            self,
            TENANT_RESOURCE_QUOTA,
            watches=[(RESOURCE_QUOTA, ResourceQuotaHandler())],
        )
