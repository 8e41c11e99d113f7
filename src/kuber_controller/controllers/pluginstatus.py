"""
Readiness gate for optional cluster components.

Some reconcile logic depends on components that may or may not be installed
in the cluster (the nginx ingress operator, istio). Their presence is
derived from the CustomResourceDefinitions they install. ``PluginStatus``
holds the derived flags and stays closed until the first full CRD listing
has been applied, so callers wait instead of acting on a guess.
"""

from __future__ import annotations

import threading

import structlog

from ..api.constants import COMPONENT_ISTIO, COMPONENT_NGINX
from ..api.kinds import CUSTOM_RESOURCE_DEFINITION
from ..kube.client import ResourceClient
from ..kube.errors import NotFoundError
from ..kube.objects import name_of
from ..runtime.controller import Reconciler
from ..runtime.manager import Manager
from ..runtime.request import DONE, Request, Result

logger = structlog.get_logger(__name__)

# CRD name -> component it proves installed.
COMPONENT_CRDS = {
    "nginxingresscontrollers.networking.kuber.io": COMPONENT_NGINX,
    "istiooperators.install.istio.io": COMPONENT_ISTIO,
}


class PluginStatus:
    """Component flags behind a one-shot readiness signal."""

    def __init__(self):
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._components = {component: False for component in COMPONENT_CRDS.values()}

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the gate opens; False if *timeout* expired first."""
        return self._ready.wait(timeout)

    def open(self) -> None:
        self._ready.set()

    def set_component(self, name: str, enabled: bool) -> None:
        with self._lock:
            self._components[name] = enabled

    def component_enabled(self, name: str, timeout: float | None = None) -> bool:
        """Whether component *name* is installed, waiting for the gate first.

        Raises ``TimeoutError`` when the gate is still closed after *timeout*.
        Unknown components are reported as not installed.
        """
        if not self._ready.wait(timeout):
            raise TimeoutError(f"plugin status not initialised after {timeout}s")
        with self._lock:
            return self._components.get(name, False)


class PluginStatusController(Reconciler):
    """Keeps ``PluginStatus`` in line with the installed CRDs."""

    def __init__(self, client: ResourceClient, status: PluginStatus):
        self.client = client
        self.status = status

    def init(self) -> None:
        """List every CRD, derive the flags and open the gate.

        Errors propagate; the manager treats them as fatal.
        """
        for crd in self.client.list(CUSTOM_RESOURCE_DEFINITION):
            self.on_change(name_of(crd), True)
        self.status.open()
        logger.info("plugin_status.initialised", components=self._snapshot())

    def reconcile(self, request: Request) -> Result:
        try:
            crd = self.client.get(CUSTOM_RESOURCE_DEFINITION, request.name)
        except NotFoundError:
            self.on_change(request.name, False)
            return DONE
        deleting = bool((crd.get("metadata") or {}).get("deletionTimestamp"))
        self.on_change(request.name, not deleting)
        return DONE

    def on_change(self, crd_name: str, exists: bool) -> None:
        component = COMPONENT_CRDS.get(crd_name)
        if component is None:
            return
        self.status.set_component(component, exists)
        logger.info("plugin_status.changed", component=component, enabled=exists)

    def _snapshot(self) -> dict[str, bool]:
        return {
            name: self.status.component_enabled(name, timeout=0)
            for name in COMPONENT_CRDS.values()
        }

    def setup_with_manager(self, mgr: Manager) -> None:
        mgr.on_elected(self.init)
        mgr.new_controller("pluginstatus", self, CUSTOM_RESOURCE_DEFINITION)
