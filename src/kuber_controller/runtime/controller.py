"""
Reconcile workers.

A ``Controller`` owns one work queue, is fed by informer events through its
event handlers, and runs a fixed pool of worker threads that pop requests
and call its ``Reconciler``. Outcomes decide what happens to the request:

* success: the backoff of the request is forgotten;
* ``Result(requeue_after=...)``: re-run after the delay;
* ``Result(requeue=True)``: re-run after the request's backoff;
* ``ConflictError``: silent rate-limited re-run;
* ``InvalidError`` / ``PermanentError``: retried up to ``max_retries`` and
  then dropped;
* anything else: logged and retried with backoff without limit.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Protocol

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ..api.kinds import ResourceKind
from ..kube.errors import ConflictError, InvalidError, PermanentError
from ..kube.retry import ExponentialBackoff
from ..observability.metrics import RECONCILE_ERRORS, RECONCILE_TIME, RECONCILE_TOTAL
from .handler import EnqueueRequestForObject, EventHandler, QueueBinding
from .informer import Informer
from .queue import RateLimitingQueue
from .request import Request, Result

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class Reconciler(ABC):
    """Converges one object towards its declared state."""

    @abstractmethod
    def reconcile(self, request: Request) -> Result:
        """Reconcile the object named by *request*. Must be idempotent."""


class ReadinessGate(Protocol):
    def wait(self, timeout: float | None = None) -> bool: ...


class Controller:
    def __init__(
        self,
        name: str,
        reconciler: Reconciler,
        for_kind: ResourceKind,
        watches: Iterable[tuple[ResourceKind, EventHandler]] = (),
        workers: int = 1,
        max_retries: int = 15,
        readiness: ReadinessGate | None = None,
        backoff: ExponentialBackoff | None = None,
    ):
        self.name = name
        self.reconciler = reconciler
        self.for_kind = for_kind
        self.watches = list(watches)
        self.workers = workers
        self.max_retries = max_retries
        self.readiness = readiness
        self.queue = RateLimitingQueue(name, backoff)
        self._threads: list[threading.Thread] = []
        self._log = logger.bind(controller=name)

    def watched_kinds(self) -> list[ResourceKind]:
        return [self.for_kind, *(kind for kind, _ in self.watches)]

    def bind(self, informer_for: Callable[[ResourceKind], Informer]) -> None:
        """Subscribe this controller's queue to the informers it needs."""
        informer_for(self.for_kind).add_listener(
            QueueBinding(EnqueueRequestForObject(), self.queue)
        )
        for kind, handler in self.watches:
            informer_for(kind).add_listener(QueueBinding(handler, self.queue))

    def start(self, stop: threading.Event) -> None:
        for index in range(self.workers):
            thread = threading.Thread(
                target=self._worker,
                args=(stop,),
                name=f"{self.name}-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        self._log.info("controller.started", workers=self.workers)

    def shutdown(self, timeout: float | None = None) -> None:
        self.queue.shutdown()
        for thread in self._threads:
            thread.join(timeout)
        self._threads.clear()

    def _worker(self, stop: threading.Event) -> None:
        if self.readiness is not None:
            while not stop.is_set() and not self.readiness.wait(timeout=1.0):
                pass
        while not stop.is_set():
            if not self.process_next():
                return

    def process_next(self, timeout: float | None = None) -> bool:
        """Handle one request. Returns False once the queue is drained and shut down."""
        request = self.queue.get(timeout=timeout)
        if request is None:
            return False
        try:
            self._reconcile_handler(request)
        finally:
            self.queue.done(request)
        return True

    def _reconcile_handler(self, request: Request) -> None:
        log = self._log.bind(request=str(request))
        started = time.perf_counter()
        with tracer.start_as_current_span(
            f"reconcile {self.name}",
            attributes={"kuber.controller": self.name, "kuber.request": str(request)},
        ) as span:
            try:
                result = self.reconciler.reconcile(request)
            except ConflictError as exc:
                outcome = "conflict"
                log.debug("reconcile.conflict", error=str(exc))
                self.queue.add_rate_limited(request)
            except (InvalidError, PermanentError) as exc:
                outcome = "error"
                self._record_error(span, exc)
                if self.queue.num_requeues(request) < self.max_retries:
                    log.warning("reconcile.failed", error=str(exc), permanent=True)
                    self.queue.add_rate_limited(request)
                else:
                    log.error("workqueue.drop", error=str(exc), retries=self.max_retries)
                    self.queue.forget(request)
            except Exception as exc:
                outcome = "error"
                self._record_error(span, exc)
                log.exception("reconcile.failed")
                self.queue.add_rate_limited(request)
            else:
                outcome = self._apply_result(request, result)
            finally:
                RECONCILE_TIME.labels(controller=self.name).observe(
                    time.perf_counter() - started
                )
            span.set_attribute("kuber.result", outcome)
        RECONCILE_TOTAL.labels(controller=self.name, result=outcome).inc()

    def _apply_result(self, request: Request, result: Result | None) -> str:
        result = result or Result()
        if result.requeue_after:
            self.queue.forget(request)
            self.queue.add_after(request, result.requeue_after)
            return "requeue_after"
        if result.requeue:
            self.queue.add_rate_limited(request)
            return "requeue"
        self.queue.forget(request)
        return "success"

    def _record_error(self, span: trace.Span, exc: BaseException) -> None:
        RECONCILE_ERRORS.labels(controller=self.name).inc()
        span.record_exception(exc)
        span.set_status(Status(StatusCode.ERROR, str(exc)))
