"""Reconcile request identity and outcome."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Request:
    """Identity of the object to reconcile. Hashable so the queue can dedupe it."""

    name: str
    namespace: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass(frozen=True)
class Result:
    """Outcome of one reconcile.

    ``requeue_after`` schedules a plain delayed re-run; ``requeue`` asks for a
    rate-limited one. The default result means the object has converged.
    """

    requeue: bool = False
    requeue_after: float | None = None


DONE = Result()
