"""Typed reconcilers and their wiring into a manager."""

from __future__ import annotations

from ..config import ControllerSettings
from ..runtime.manager import Manager
from .environment import EnvironmentReconciler
from .pluginstatus import PluginStatus, PluginStatusController
from .tenant import TenantReconciler
from .tenantnetworkpolicy import TenantNetworkPolicyReconciler
from .tenantresourcequota import TenantResourceQuotaReconciler

__all__ = [
    "EnvironmentReconciler",
    "PluginStatus",
    "PluginStatusController",
    "TenantReconciler",
    "TenantNetworkPolicyReconciler",
    "TenantResourceQuotaReconciler",
    "setup_controllers",
]


def setup_controllers(mgr: Manager, settings: ControllerSettings) -> PluginStatus:
    """Register every reconciler with *mgr*; return the shared readiness gate."""
    plugins = PluginStatus()
    recorder = mgr.event_recorder(settings.service_name)

    PluginStatusController(mgr.client, plugins).setup_with_manager(mgr)
    TenantReconciler(mgr.client, recorder).setup_with_manager(mgr)
    EnvironmentReconciler(mgr.client, recorder).setup_with_manager(mgr)
    TenantResourceQuotaReconciler(mgr.client).setup_with_manager(mgr)
    TenantNetworkPolicyReconciler(
        mgr.client, recorder, plugins, gateway_namespace=settings.gateway_namespace
    ).setup_with_manager(mgr)
    return plugins
