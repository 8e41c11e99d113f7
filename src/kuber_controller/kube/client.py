"""
Resource client.

``ResourceClient`` is the only surface through which the controller talks to
the cluster: reads, label-selected lists, watches and the write verbs, each
honouring optimistic concurrency through ``metadata.resourceVersion``.
``KubernetesResourceClient`` implements it on the kubernetes dynamic client.
"""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient

from ..api.kinds import ResourceKind
from .errors import PermanentError, from_api_exception

logger = structlog.get_logger(__name__)

_LABEL_VALUE = re.compile(r"^(([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?$")
_LABEL_KEY = re.compile(
    r"^([a-z0-9]([-a-z0-9.]*[a-z0-9])?/)?[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$"
)


def label_selector(labels: Mapping[str, str] | None) -> str | None:
    """Render an equality-based selector, rejecting malformed keys or values."""
    if not labels:
        return None
    for key, value in labels.items():
        if not _LABEL_KEY.match(key or "") or len(key.rpartition("/")[2]) > 63:
            raise PermanentError(f"invalid label selector key {key!r}")
        if not _LABEL_VALUE.match(value or "") or len(value) > 63:
            raise PermanentError(f"invalid label selector value {value!r} for {key}")
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def matches_labels(
    obj_labels: Mapping[str, str] | None, selector: Mapping[str, str] | None
) -> bool:
    obj_labels = obj_labels or {}
    return all(obj_labels.get(key) == value for key, value in (selector or {}).items())


@dataclass
class WatchEvent:
    """One event from a watch stream; ``object`` is the raw API object."""

    type: str
    object: dict[str, Any]


class ResourceClient(ABC):
    """Cluster API contract used by reconcilers, informers and the elector."""

    @abstractmethod
    def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None, live: bool = False
    ) -> Any:
        """Read one object. ``live`` asks for a read that bypasses any cache."""

    @abstractmethod
    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[Any]:
        """List objects, optionally restricted to a namespace and exact label values."""

    @abstractmethod
    def list_raw(self, kind: ResourceKind) -> tuple[list[dict[str, Any]], str]:
        """List every object of *kind* as raw dicts plus the list resourceVersion."""

    @abstractmethod
    def watch(
        self, kind: ResourceKind, resource_version: str | None, timeout_seconds: int
    ) -> Iterator[WatchEvent]:
        """Stream changes of *kind* that happened after *resource_version*."""

    @abstractmethod
    def create(self, kind: ResourceKind, obj: Any) -> Any:
        """Create an object."""

    @abstractmethod
    def update(self, kind: ResourceKind, obj: Any) -> Any:
        """Replace an object; fails with ConflictError on a stale resourceVersion."""

    @abstractmethod
    def update_status(self, kind: ResourceKind, obj: Any) -> Any:
        """Replace the status subresource of an object."""

    @abstractmethod
    def patch(
        self, kind: ResourceKind, name: str, patch: Mapping[str, Any], namespace: str | None = None
    ) -> Any:
        """Apply a JSON merge patch."""

    @abstractmethod
    def delete(self, kind: ResourceKind, name: str, namespace: str | None = None) -> None:
        """Delete one object (the server keeps it while finalizers remain)."""

    @abstractmethod
    def delete_collection(
        self,
        kind: ResourceKind,
        labels: Mapping[str, str],
        namespace: str | None = None,
    ) -> None:
        """Delete every object of *kind* carrying *labels*."""


def load_api_client(kubeconfig: str | None = None, context: str | None = None) -> client.ApiClient:
    """Build an ApiClient from in-cluster config, falling back to kubeconfig."""
    if kubeconfig:
        return config.new_client_from_config(config_file=kubeconfig, context=context)
    try:
        config.load_incluster_config()
        return client.ApiClient()
    except config.ConfigException:
        return config.new_client_from_config(context=context)


class KubernetesResourceClient(ResourceClient):
    """``ResourceClient`` backed by the kubernetes dynamic client."""

    def __init__(self, api_client: client.ApiClient, request_timeout: float = 30.0):
        self.request_timeout = request_timeout
        self._dynamic = DynamicClient(api_client)
        self._resources: dict[str, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        kubeconfig: str | None = None,
        context: str | None = None,
        request_timeout: float = 30.0,
    ) -> KubernetesResourceClient:
        return cls(load_api_client(kubeconfig, context), request_timeout=request_timeout)

    def _resource(self, kind: ResourceKind) -> Any:
        with self._lock:
            resource = self._resources.get(kind.kind)
            if resource is None:
                resource = self._dynamic.resources.get(
                    api_version=kind.api_version, kind=kind.kind
                )
                self._resources[kind.kind] = resource
            return resource

    def _call(self, method: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return method(*args, _request_timeout=self.request_timeout, **kwargs)
        except ApiException as exc:
            raise from_api_exception(exc) from exc

    @staticmethod
    def _namespace(
        kind: ResourceKind, namespace: str | None, body: Mapping[str, Any] | None = None
    ) -> str | None:
        if not kind.namespaced:
            return None
        if namespace:
            return namespace
        return ((body or {}).get("metadata") or {}).get("namespace")

    def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None, live: bool = False
    ) -> Any:
        result = self._call(
            self._dynamic.get,
            self._resource(kind),
            name=name,
            namespace=self._namespace(kind, namespace),
        )
        return kind.decode(result.to_dict())

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[Any]:
        result = self._call(
            self._dynamic.get,
            self._resource(kind),
            namespace=self._namespace(kind, namespace),
            label_selector=label_selector(labels),
        )
        return [kind.decode(item) for item in result.to_dict().get("items") or []]

    def list_raw(self, kind: ResourceKind) -> tuple[list[dict[str, Any]], str]:
        result = self._call(self._dynamic.get, self._resource(kind)).to_dict()
        items = []
        for item in result.get("items") or []:
            item.setdefault("apiVersion", kind.api_version)
            item.setdefault("kind", kind.kind)
            items.append(item)
        return items, (result.get("metadata") or {}).get("resourceVersion", "")

    def watch(
        self, kind: ResourceKind, resource_version: str | None, timeout_seconds: int
    ) -> Iterator[WatchEvent]:
        watcher = watch.Watch()
        try:
            for event in self._dynamic.watch(
                self._resource(kind),
                resource_version=resource_version or None,
                timeout=timeout_seconds,
                watcher=watcher,
            ):
                yield WatchEvent(type=event["type"], object=event["raw_object"])
        except ApiException as exc:
            raise from_api_exception(exc) from exc
        finally:
            watcher.stop()

    def create(self, kind: ResourceKind, obj: Any) -> Any:
        body = kind.encode(obj)
        result = self._call(
            self._dynamic.create,
            self._resource(kind),
            body=body,
            namespace=self._namespace(kind, None, body),
        )
        return kind.decode(result.to_dict())

    def update(self, kind: ResourceKind, obj: Any) -> Any:
        body = kind.encode(obj)
        result = self._call(
            self._dynamic.replace,
            self._resource(kind),
            body=body,
            namespace=self._namespace(kind, None, body),
        )
        return kind.decode(result.to_dict())

    def update_status(self, kind: ResourceKind, obj: Any) -> Any:
        body = kind.encode(obj)
        result = self._call(
            self._dynamic.replace,
            self._resource(kind).subresources["status"],
            body=body,
            namespace=self._namespace(kind, None, body),
        )
        return kind.decode(result.to_dict())

    def patch(
        self, kind: ResourceKind, name: str, patch: Mapping[str, Any], namespace: str | None = None
    ) -> Any:
        result = self._call(
            self._dynamic.patch,
            self._resource(kind),
            body=dict(patch),
            name=name,
            namespace=self._namespace(kind, namespace),
            content_type="application/merge-patch+json",
        )
        return kind.decode(result.to_dict())

    def delete(self, kind: ResourceKind, name: str, namespace: str | None = None) -> None:
        self._call(
            self._dynamic.delete,
            self._resource(kind),
            name=name,
            namespace=self._namespace(kind, namespace),
        )

    def delete_collection(
        self,
        kind: ResourceKind,
        labels: Mapping[str, str],
        namespace: str | None = None,
    ) -> None:
        selector = label_selector(labels)
        if selector is None:
            raise PermanentError(f"refusing to delete every {kind.kind} without a selector")
        self._call(
            self._dynamic.delete,
            self._resource(kind),
            namespace=self._namespace(kind, namespace),
            label_selector=selector,
        )
