"""Node events fan out to every TenantNetworkPolicy."""

from __future__ import annotations

from typing import Any

import structlog

from ..api.kinds import TENANT_NETWORK_POLICY
from ..kube.client import ResourceClient
from ..kube.errors import ApiError
from ..runtime.handler import EventHandler
from ..runtime.queue import RateLimitingQueue
from ..runtime.request import Request

logger = structlog.get_logger(__name__)


class NodeHandler(EventHandler):
    """A node joining or leaving the cluster re-enqueues all network policies.

    Node updates (heartbeats, condition changes) are ignored.
    """

    def __init__(self, client: ResourceClient):
        self.client = client

    def create(self, obj: Any, queue: RateLimitingQueue) -> None:
        self._enqueue_all(queue)

    def delete(self, obj: Any, queue: RateLimitingQueue) -> None:
        self._enqueue_all(queue)

    def _enqueue_all(self, queue: RateLimitingQueue) -> None:
        try:
            policies = self.client.list(TENANT_NETWORK_POLICY)
        except ApiError as exc:
            logger.error("node_handler.list_failed", error=str(exc))
            return
        for policy in policies:
            queue.add(Request(name=policy.name))
