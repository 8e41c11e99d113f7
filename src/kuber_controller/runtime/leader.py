"""Leader election on a ``coordination.k8s.io/v1`` Lease."""

from __future__ import annotations

import random
import socket
import threading
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from ..api.kinds import LEASE
from ..kube.client import ResourceClient
from ..kube.errors import AlreadyExistsError, ApiError, ConflictError, NotFoundError

logger = structlog.get_logger(__name__)

_MICRO_TIME = "%Y-%m-%dT%H:%M:%S.%fZ"


def default_identity() -> str:
    return f"{socket.gethostname()}_{uuid.uuid4().hex[:8]}"


def format_micro_time(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime(_MICRO_TIME)


def parse_micro_time(value: str | None) -> float | None:
    if not value:
        return None
    for layout in (_MICRO_TIME, "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(value, layout).replace(tzinfo=timezone.utc).timestamp()
        except ValueError:
            continue
    return None


class LeaderElector:
    """
    Acquire and keep a Lease so that a single replica runs the workers.

    ``elected`` is set once the lease is held. If the lease cannot be renewed
    within ``renew_deadline`` the elector gives up and calls ``on_lost``;
    the manager treats that as fatal.
    """

    def __init__(
        self,
        client: ResourceClient,
        name: str,
        namespace: str,
        identity: str | None = None,
        lease_duration: float = 30.0,
        renew_deadline: float = 20.0,
        retry_period: float = 2.0,
        on_lost: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.name = name
        self.namespace = namespace
        self.identity = identity or default_identity()
        self.lease_duration = lease_duration
        self.renew_deadline = renew_deadline
        self.retry_period = retry_period
        self.on_lost = on_lost
        self.clock = clock
        self.elected = threading.Event()
        self._thread: threading.Thread | None = None
        self._log = logger.bind(lease=f"{namespace}/{name}", identity=self.identity)

    def start(self, stop: threading.Event) -> None:
        self._thread = threading.Thread(
            target=self.run, args=(stop,), name="leader-elector", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self, stop: threading.Event) -> None:
        while not stop.is_set():
            if self.try_acquire_or_renew():
                self._log.info("leader.elected")
                self.elected.set()
                break
            stop.wait(self._jittered(self.retry_period))
        if not self.elected.is_set():
            return

        last_renew = self.clock()
        while not stop.wait(self.retry_period):
            if self.try_acquire_or_renew():
                last_renew = self.clock()
                continue
            if self.clock() - last_renew > self.renew_deadline:
                self._log.error("leader.lost")
                self.elected.clear()
                if self.on_lost is not None:
                    self.on_lost()
                return
        self.release()

    def try_acquire_or_renew(self) -> bool:
        now = self.clock()
        try:
            lease = self.client.get(LEASE, self.name, self.namespace, live=True)
        except NotFoundError:
            return self._create(now)
        except ApiError as exc:
            self._log.warning("leader.get_failed", error=str(exc))
            return False

        spec = lease.setdefault("spec", {})
        holder = spec.get("holderIdentity") or ""
        renewed = parse_micro_time(spec.get("renewTime")) or 0.0
        duration = spec.get("leaseDurationSeconds") or self.lease_duration
        if holder and holder != self.identity and renewed + duration > now:
            return False

        if holder != self.identity:
            spec["acquireTime"] = format_micro_time(now)
            spec["leaseTransitions"] = (spec.get("leaseTransitions") or 0) + 1
        spec["holderIdentity"] = self.identity
        spec["leaseDurationSeconds"] = int(self.lease_duration)
        spec["renewTime"] = format_micro_time(now)
        try:
            self.client.update(LEASE, lease)
        except ConflictError:
            return False
        except ApiError as exc:
            self._log.warning("leader.update_failed", error=str(exc))
            return False
        return True

    def release(self) -> None:
        """Give the lease up so another replica can take over at once."""
        if not self.elected.is_set():
            return
        self.elected.clear()
        try:
            lease = self.client.get(LEASE, self.name, self.namespace, live=True)
            spec = lease.setdefault("spec", {})
            if spec.get("holderIdentity") != self.identity:
                return
            spec["holderIdentity"] = ""
            spec["leaseDurationSeconds"] = 1
            self.client.update(LEASE, lease)
            self._log.info("leader.released")
        except ApiError as exc:
            self._log.warning("leader.release_failed", error=str(exc))

    def _create(self, now: float) -> bool:
        lease: dict[str, Any] = {
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": {
                "holderIdentity": self.identity,
                "leaseDurationSeconds": int(self.lease_duration),
                "acquireTime": format_micro_time(now),
                "renewTime": format_micro_time(now),
                "leaseTransitions": 0,
            },
        }
        try:
            self.client.create(LEASE, lease)
        except (AlreadyExistsError, ConflictError):
            return False
        except ApiError as exc:
            self._log.warning("leader.create_failed", error=str(exc))
            return False
        return True

    @staticmethod
    def _jittered(period: float) -> float:
        return period * (1.0 + random.uniform(0.0, 0.2))
