"""TenantResourceQuota changes routed to the owning Tenant."""

from __future__ import annotations

from ..api.constants import LABEL_TENANT
from ..api.v1beta1 import TenantResourceQuota
from ..kube.quantity import semantic_equal
from ..runtime.handler import EventHandler
from ..runtime.queue import RateLimitingQueue
from ..runtime.request import Request


class TenantResourceQuotaHandler(EventHandler):
    def create(self, obj: TenantResourceQuota, queue: RateLimitingQueue) -> None:
        _enqueue_tenant(obj, queue)

    def update(
        self, old: TenantResourceQuota, new: TenantResourceQuota, queue: RateLimitingQueue
    ) -> None:
        before, after = old.status, new.status
        if (
            semantic_equal(before.hard, after.hard)
            and semantic_equal(before.allocated, after.allocated)
            and semantic_equal(before.used, after.used)
        ):
            return
        _enqueue_tenant(new, queue)

    def delete(self, obj: TenantResourceQuota, queue: RateLimitingQueue) -> None:
        _enqueue_tenant(obj, queue)


def _enqueue_tenant(obj: TenantResourceQuota, queue: RateLimitingQueue) -> None:
    tenant = obj.metadata.labels.get(LABEL_TENANT)
    if tenant:
        queue.add(Request(name=tenant))
