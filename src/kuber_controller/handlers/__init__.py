"""Event routers mapping changes of one kind to requests for another."""

from .environment import EnvironmentHandler
from .node import NodeHandler
from .resourcequota import ResourceQuotaHandler, quota_status_changed
from .tenantresourcequota import TenantResourceQuotaHandler

__all__ = [
    "EnvironmentHandler",
    "NodeHandler",
    "ResourceQuotaHandler",
    "quota_status_changed",
    "TenantResourceQuotaHandler",
]
