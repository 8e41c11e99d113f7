"""Audit events recorded against reconciled objects."""

from __future__ import annotations

from typing import Any

import structlog

from ..api.constants import EVENT_TYPE_NORMAL, EVENT_TYPE_WARNING
from ..api.kinds import EVENT
from ..api.v1beta1 import KubeObject
from .client import ResourceClient
from .errors import ApiError
from .objects import now_rfc3339

logger = structlog.get_logger(__name__)


class EventRecorder:
    """Creates ``core/v1`` Events for one reporting component."""

    def __init__(self, client: ResourceClient, component: str, namespace: str = "default"):
        self.client = client
        self.component = component
        self.namespace = namespace

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> None:
        """Record an event. Failures are logged and never raised."""
        involved = self._involved_object(obj)
        timestamp = now_rfc3339()
        body = {
            "metadata": {
                "generateName": f"{involved['name']}.",
                "namespace": involved.get("namespace") or self.namespace,
            },
            "involvedObject": involved,
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self.component},
            "reportingComponent": self.component,
            "firstTimestamp": timestamp,
            "lastTimestamp": timestamp,
            "count": 1,
        }
        try:
            self.client.create(EVENT, body)
        except ApiError as exc:
            logger.warning(
                "event.record_failed",
                component=self.component,
                reason=reason,
                object=involved["name"],
                error=str(exc),
            )

    def normal(self, obj: Any, reason: str, message: str) -> None:
        self.event(obj, EVENT_TYPE_NORMAL, reason, message)

    def warning(self, obj: Any, reason: str, message: str) -> None:
        self.event(obj, EVENT_TYPE_WARNING, reason, message)

    @staticmethod
    def _involved_object(obj: Any) -> dict[str, Any]:
        if isinstance(obj, KubeObject):
            meta = obj.metadata
            involved = {
                "apiVersion": obj.api_version,
                "kind": obj.kind,
                "name": meta.name,
                "uid": meta.uid,
                "resourceVersion": meta.resource_version,
                "namespace": meta.namespace,
            }
        else:
            meta = obj.get("metadata") or {}
            involved = {
                "apiVersion": obj.get("apiVersion"),
                "kind": obj.get("kind"),
                "name": meta.get("name", ""),
                "uid": meta.get("uid"),
                "resourceVersion": meta.get("resourceVersion"),
                "namespace": meta.get("namespace"),
            }
        return {key: value for key, value in involved.items() if value is not None}
