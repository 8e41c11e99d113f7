"""Native ResourceQuota status changes routed to the tenant's TenantResourceQuota."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..api.constants import LABEL_TENANT
from ..kube.objects import labels_of
from ..kube.quantity import semantic_equal
from ..runtime.handler import EventHandler
from ..runtime.queue import RateLimitingQueue
from ..runtime.request import Request


def quota_status_changed(old: Mapping[str, Any], new: Mapping[str, Any]) -> bool:
    """True when the computed quota usage of a ResourceQuota moved.

    Quantities compare by value, so ``1Gi`` and ``1024Mi`` are equal.
    """
    old_status = old.get("status") or {}
    new_status = new.get("status") or {}
    for key in ("hard", "used"):
        if not semantic_equal(old_status.get(key), new_status.get(key)):
            return True
    rest = {"hard", "used"}
    return {k: v for k, v in old_status.items() if k not in rest} != {
        k: v for k, v in new_status.items() if k not in rest
    }


class ResourceQuotaHandler(EventHandler):
    def create(self, obj: Mapping[str, Any], queue: RateLimitingQueue) -> None:
        _enqueue_tenant(obj, queue)

    def update(
        self, old: Mapping[str, Any], new: Mapping[str, Any], queue: RateLimitingQueue
    ) -> None:
        if quota_status_changed(old, new):
            _enqueue_tenant(new, queue)

    def delete(self, obj: Mapping[str, Any], queue: RateLimitingQueue) -> None:
        _enqueue_tenant(obj, queue)


def _enqueue_tenant(obj: Any, queue: RateLimitingQueue) -> None:
    tenant = labels_of(obj).get(LABEL_TENANT)
    if tenant:
        queue.add(Request(name=tenant))
