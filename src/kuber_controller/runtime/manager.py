"""
Controller manager.

Wires informers, controllers, the leader elector and the hooks that must run
once leadership is acquired, and drives their lifecycle:

1. start one informer per watched kind and wait for the caches to sync;
2. wait for the lease when leader election is enabled;
3. run the on-elected hooks (the readiness gate initialisation);
4. start the controller workers and block until stopped.

Failures in steps 1 to 3, and losing the lease later, are fatal.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog

from ..api.kinds import ResourceKind
from ..config import ControllerSettings
from ..kube.client import ResourceClient
from ..kube.events import EventRecorder
from ..kube.retry import ExponentialBackoff
from .caching_client import CachingClient
from .controller import Controller
from .informer import Informer
from .leader import LeaderElector

logger = structlog.get_logger(__name__)


class ManagerError(RuntimeError):
    """The manager cannot keep running."""


class Manager:
    def __init__(
        self,
        api: ResourceClient,
        workers: int = 1,
        max_retries: int = 15,
        backoff_base_delay: float = 0.005,
        backoff_max_delay: float = 1000.0,
        watch_timeout: int = 300,
        cache_sync_timeout: float = 120.0,
        event_namespace: str = "default",
        elector: LeaderElector | None = None,
    ):
        self.api = api
        self.workers = workers
        self.max_retries = max_retries
        self.backoff_base_delay = backoff_base_delay
        self.backoff_max_delay = backoff_max_delay
        self.watch_timeout = watch_timeout
        self.cache_sync_timeout = cache_sync_timeout
        self.event_namespace = event_namespace
        self.elector = elector
        if elector is not None:
            elector.on_lost = lambda: self.fail(ManagerError("leader election lost"))

        self.informers: dict[str, Informer] = {}
        self.client = CachingClient(api, self.informers)
        self.controllers: list[Controller] = []
        self._on_elected: list[Callable[[], None]] = []
        self._stop = threading.Event()
        self._fatal: BaseException | None = None

    @classmethod
    def from_settings(
        cls,
        api: ResourceClient,
        settings: ControllerSettings,
        elector: LeaderElector | None = None,
    ) -> Manager:
        return cls(
            api,
            workers=settings.workers,
            max_retries=settings.max_retries,
            backoff_base_delay=settings.backoff_base_delay,
            backoff_max_delay=settings.backoff_max_delay,
            watch_timeout=settings.watch_timeout,
            cache_sync_timeout=settings.cache_sync_timeout,
            event_namespace=settings.event_namespace,
            elector=elector,
        )

    @property
    def stopped(self) -> threading.Event:
        return self._stop

    def event_recorder(self, component: str) -> EventRecorder:
        return EventRecorder(self.api, component, namespace=self.event_namespace)

    def informer_for(self, kind: ResourceKind) -> Informer:
        informer = self.informers.get(kind.kind)
        if informer is None:
            informer = Informer(self.api, kind, watch_timeout=self.watch_timeout)
            self.informers[kind.kind] = informer
        return informer

    def new_controller(self, name: str, reconciler, for_kind: ResourceKind, **kwargs) -> Controller:
        """Build a controller with the manager's worker and backoff settings and add it."""
        kwargs.setdefault("workers", self.workers)
        kwargs.setdefault("max_retries", self.max_retries)
        kwargs.setdefault(
            "backoff",
            ExponentialBackoff(self.backoff_base_delay, self.backoff_max_delay),
        )
        controller = Controller(name, reconciler, for_kind, **kwargs)
        self.add_controller(controller)
        return controller

    def add_controller(self, controller: Controller) -> None:
        controller.bind(self.informer_for)
        self.controllers.append(controller)

    def on_elected(self, hook: Callable[[], None]) -> None:
        """Run *hook* once leadership is acquired, before any worker starts."""
        self._on_elected.append(hook)

    def fail(self, error: BaseException) -> None:
        if self._fatal is None:
            self._fatal = error
        logger.error("manager.fatal", error=str(error))
        self._stop.set()

    def stop(self) -> None:
        self._stop.set()

    def run(self) -> None:
        """Start everything and block until stopped. Raises on a fatal error."""
        try:
            self._start()
            self._stop.wait()
        finally:
            self._shutdown()
        if self._fatal is not None:
            raise ManagerError(str(self._fatal)) from self._fatal

    def _start(self) -> None:
        for informer in self.informers.values():
            informer.start(self._stop)
        for informer in self.informers.values():
            if not informer.wait_for_sync(self.cache_sync_timeout):
                if self._stop.is_set():
                    return
                self.fail(ManagerError(f"timed out syncing {informer.kind.kind} cache"))
                return
        logger.info("manager.caches_synced", kinds=sorted(self.informers))

        if self.elector is not None:
            self.elector.start(self._stop)
            while not self.elector.elected.wait(0.5):
                if self._stop.is_set():
                    return

        for hook in self._on_elected:
            try:
                hook()
            except Exception as exc:
                self.fail(exc)
                return

        for controller in self.controllers:
            controller.start(self._stop)
        logger.info("manager.started", controllers=[c.name for c in self.controllers])

    def _shutdown(self) -> None:
        self._stop.set()
        for controller in self.controllers:
            controller.shutdown(timeout=5.0)
        for informer in self.informers.values():
            informer.join(timeout=1.0)
        if self.elector is not None:
            self.elector.join(timeout=5.0)
        logger.info("manager.stopped")
