"""Resource client that serves reads from informer caches."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

from ..api.kinds import ResourceKind
from ..kube.client import ResourceClient, WatchEvent
from ..kube.errors import NotFoundError
from .informer import Informer


class CachingClient(ResourceClient):
    """
    Reads come from the synced informer of the kind when one exists, writes
    always go to the API server. ``get(..., live=True)`` bypasses the cache;
    conflict retries use it so each attempt starts from the server's copy.
    """

    def __init__(self, delegate: ResourceClient, informers: dict[str, Informer] | None = None):
        self.delegate = delegate
        self.informers = informers if informers is not None else {}

    def _cached(self, kind: ResourceKind) -> Informer | None:
        informer = self.informers.get(kind.kind)
        if informer is None or not informer.synced.is_set():
            return None
        return informer

    def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None, live: bool = False
    ) -> Any:
        informer = None if live else self._cached(kind)
        if informer is None:
            return self.delegate.get(kind, name, namespace=namespace, live=True)
        raw = informer.cache.get(name, namespace if kind.namespaced else None)
        if raw is None:
            raise NotFoundError(f'{kind.plural} "{name}" not found', 404, "NotFound")
        return kind.decode(raw)

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[Any]:
        informer = self._cached(kind)
        if informer is None:
            return self.delegate.list(kind, namespace=namespace, labels=labels)
        return [kind.decode(raw) for raw in informer.cache.list(namespace, labels)]

    def list_raw(self, kind: ResourceKind) -> tuple[list[dict[str, Any]], str]:
        return self.delegate.list_raw(kind)

    def watch(
        self, kind: ResourceKind, resource_version: str | None, timeout_seconds: int
    ) -> Iterator[WatchEvent]:
        return self.delegate.watch(kind, resource_version, timeout_seconds)

    def create(self, kind: ResourceKind, obj: Any) -> Any:
        return self.delegate.create(kind, obj)

    def update(self, kind: ResourceKind, obj: Any) -> Any:
        return self.delegate.update(kind, obj)

    def update_status(self, kind: ResourceKind, obj: Any) -> Any:
        return self.delegate.update_status(kind, obj)

    def patch(
        self, kind: ResourceKind, name: str, patch: Mapping[str, Any], namespace: str | None = None
    ) -> Any:
        return self.delegate.patch(kind, name, patch, namespace=namespace)

    def delete(self, kind: ResourceKind, name: str, namespace: str | None = None) -> None:
        self.delegate.delete(kind, name, namespace=namespace)

    def delete_collection(
        self,
        kind: ResourceKind,
        labels: Mapping[str, str],
        namespace: str | None = None,
    ) -> None:
        self.delegate.delete_collection(kind, labels, namespace=namespace)
