"""
List-then-watch loop for one resource kind.

An informer keeps an ``ObjectCache`` equal to the server's view of one kind
and tells its listeners about every change. It lists once, watches from the
list's resourceVersion, and lists again whenever the watch falls too far
behind (410 Gone) or fails. Informers run on every replica; leadership only
gates the workers that consume their events.
"""

from __future__ import annotations

import threading
from typing import Any, Protocol

import structlog

from ..api.kinds import ResourceKind
from ..kube.client import ResourceClient, WatchEvent
from ..kube.errors import GoneError
from ..kube.retry import ExponentialBackoff
from .cache import ObjectCache, object_key

logger = structlog.get_logger(__name__)


class InformerListener(Protocol):
    def on_add(self, obj: Any) -> None: ...

    def on_update(self, old: Any, new: Any) -> None: ...

    def on_delete(self, obj: Any) -> None: ...


def _resource_version(raw: dict[str, Any]) -> str:
    return (raw.get("metadata") or {}).get("resourceVersion") or ""


class Informer:
    """Keeps the cache of one kind current and fans events out to listeners."""

    def __init__(
        self,
        client: ResourceClient,
        kind: ResourceKind,
        watch_timeout: int = 300,
        backoff: ExponentialBackoff | None = None,
    ):
        self.client = client
        self.kind = kind
        self.watch_timeout = watch_timeout
        self.backoff = backoff or ExponentialBackoff(base_delay=0.5, max_delay=30.0, jitter=True)
        self.cache = ObjectCache()
        self.synced = threading.Event()
        self._listeners: list[InformerListener] = []
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def add_listener(self, listener: InformerListener) -> None:
        """Register *listener*; objects already cached are replayed as adds."""
        with self._lock:
            self._listeners.append(listener)
        if self.synced.is_set():
            for raw in self.cache.list():
                self._notify(listener, "on_add", self.kind.decode(raw))

    def start(self, stop: threading.Event) -> threading.Thread:
        self._thread = threading.Thread(
            target=self.run, args=(stop,), name=f"informer-{self.kind.kind}", daemon=True
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        return self.synced.wait(timeout)

    def run(self, stop: threading.Event) -> None:
        failures = 0
        while not stop.is_set():
            try:
                resource_version = self.relist()
                failures = 0
                self._watch(stop, resource_version)
            except GoneError:
                logger.info("informer.relist", kind=self.kind.kind, reason="gone")
            except Exception as exc:
                failures += 1
                delay = self.backoff.calculate_delay(failures)
                logger.warning(
                    "informer.error",
                    kind=self.kind.kind,
                    error=str(exc),
                    retry_in=round(delay, 2),
                )
                stop.wait(delay)
        logger.debug("informer.stopped", kind=self.kind.kind)

    def relist(self) -> str:
        """List every object, reconcile the cache with it and notify listeners."""
        items, resource_version = self.client.list_raw(self.kind)
        previous = self.cache.replace(items)
        for raw in items:
            old = previous.pop(object_key(raw), None)
            if old is None:
                self._dispatch("on_add", raw)
            elif _resource_version(old) != _resource_version(raw):
                self._dispatch("on_update", old, raw)
        for old in previous.values():
            self._dispatch("on_delete", old)
        if not self.synced.is_set():
            logger.info("informer.synced", kind=self.kind.kind, objects=len(items))
            self.synced.set()
        return resource_version

    def _watch(self, stop: threading.Event, resource_version: str) -> None:
        while not stop.is_set():
            for event in self.client.watch(self.kind, resource_version, self.watch_timeout):
                if stop.is_set():
                    return
                resource_version = self.handle(event) or resource_version

    def handle(self, event: WatchEvent) -> str | None:
        """Apply one watch event to the cache; return its resourceVersion."""
        raw = event.object
        if event.type == "ERROR":
            code = raw.get("code")
            if code == 410:
                raise GoneError(raw.get("message", "watch expired"), 410, "Expired")
            raise RuntimeError(f"watch error for {self.kind.kind}: {raw.get('message', raw)}")
        if event.type == "BOOKMARK":
            return _resource_version(raw)

        raw.setdefault("apiVersion", self.kind.api_version)
        raw.setdefault("kind", self.kind.kind)
        if event.type == "DELETED":
            old = self.cache.remove(raw)
            self._dispatch("on_delete", old or raw)
        else:
            old = self.cache.upsert(raw)
            if old is None:
                self._dispatch("on_add", raw)
            else:
                self._dispatch("on_update", old, raw)
        return _resource_version(raw)

    def _dispatch(self, method: str, *raws: dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        objects = [self.kind.decode(raw) for raw in raws]
        for listener in listeners:
            self._notify(listener, method, *objects)

    def _notify(self, listener: InformerListener, method: str, *objects: Any) -> None:
        try:
            getattr(listener, method)(*objects)
        except Exception:
            logger.exception(
                "informer.listener_failed", kind=self.kind.kind, handler_event=method
            )
