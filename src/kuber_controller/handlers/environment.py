"""Environment events routed to the owner of the tenant they belong to."""

from __future__ import annotations

from collections.abc import Iterable

from ..api.v1beta1 import Environment
from ..runtime.handler import EventHandler
from ..runtime.queue import RateLimitingQueue
from ..runtime.request import Request


class EnvironmentHandler(EventHandler):
    """
    Enqueue the tenant-named object an Environment belongs to.

    Used by the Tenant controller (status lists environments and namespaces)
    and the TenantNetworkPolicy controller (policies follow the namespaces),
    both of which share the tenant's name. An update only matters when one
    of *fields* of the Environment spec moved; both the old and the new tenant are then
    enqueued so a re-assignment refreshes both sides.
    """

    def __init__(self, fields: Iterable[str] = ("tenant", "namespace")):
        self.fields = tuple(fields)

    def create(self, obj: Environment, queue: RateLimitingQueue) -> None:
        _enqueue_tenant(obj, queue)

    def update(self, old: Environment, new: Environment, queue: RateLimitingQueue) -> None:
        if not self.changed(old, new):
            return
        _enqueue_tenant(new, queue)
        _enqueue_tenant(old, queue)

    def delete(self, obj: Environment, queue: RateLimitingQueue) -> None:
        _enqueue_tenant(obj, queue)

    def changed(self, old: Environment, new: Environment) -> bool:
        return any(getattr(old.spec, field) != getattr(new.spec, field) for field in self.fields)


def _enqueue_tenant(env: Environment, queue: RateLimitingQueue) -> None:
    if env.spec.tenant:
        queue.add(Request(name=env.spec.tenant))
