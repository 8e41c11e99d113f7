"""In-memory object store with a secondary index on tenancy labels."""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Any

from ..api.constants import INDEXED_LABELS
from ..kube.client import matches_labels

ObjectKey = tuple[str, str]


def object_key(raw: Mapping[str, Any]) -> ObjectKey:
    meta = raw.get("metadata") or {}
    return meta.get("namespace") or "", meta.get("name", "")


class ObjectCache:
    """
    Raw objects of one kind, keyed by ``(namespace, name)``.

    Lookups by one of ``INDEXED_LABELS`` go through an index instead of a
    scan, which is how reconcilers find a tenant's children.
    """

    def __init__(self, indexed_labels: Iterable[str] = INDEXED_LABELS):
        self._lock = threading.RLock()
        self._items: dict[ObjectKey, dict[str, Any]] = {}
        self._indexed = tuple(indexed_labels)
        self._index: dict[tuple[str, str], set[ObjectKey]] = defaultdict(set)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def replace(self, items: Iterable[dict[str, Any]]) -> dict[ObjectKey, dict[str, Any]]:
        """Swap the whole content; return the previous content."""
        with self._lock:
            previous = self._items
            self._items = {}
            self._index = defaultdict(set)
            for raw in items:
                self._store(raw)
            return previous

    def upsert(self, raw: dict[str, Any]) -> dict[str, Any] | None:
        """Store *raw*, returning the object it replaced."""
        with self._lock:
            old = self._items.get(object_key(raw))
            if old is not None:
                self._unindex(old)
            self._store(raw)
            return old

    def remove(self, raw: Mapping[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            old = self._items.pop(object_key(raw), None)
            if old is not None:
                self._unindex(old)
            return old

    def get(self, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        with self._lock:
            return self._items.get((namespace or "", name))

    def list(
        self,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            keys = self._candidate_keys(labels)
            found = []
            for key in keys:
                raw = self._items[key]
                if namespace and key[0] != namespace:
                    continue
                if not matches_labels((raw.get("metadata") or {}).get("labels"), labels):
                    continue
                found.append(raw)
            return sorted(found, key=object_key)

    def _candidate_keys(self, labels: Mapping[str, str] | None) -> Iterable[ObjectKey]:
        indexed = [
            (key, value) for key, value in (labels or {}).items() if key in self._indexed
        ]
        if not indexed:
            return list(self._items)
        sets = [self._index.get(entry, set()) for entry in indexed]
        return set.intersection(*sets)

    def _store(self, raw: dict[str, Any]) -> None:
        key = object_key(raw)
        self._items[key] = raw
        for label, value in self._indexed_values(raw):
            self._index[(label, value)].add(key)

    def _unindex(self, raw: Mapping[str, Any]) -> None:
        key = object_key(raw)
        for entry in self._indexed_values(raw):
            keys = self._index.get(entry)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._index[entry]

    def _indexed_values(self, raw: Mapping[str, Any]) -> list[tuple[str, str]]:
        labels = (raw.get("metadata") or {}).get("labels") or {}
        return [(label, labels[label]) for label in self._indexed if label in labels]
