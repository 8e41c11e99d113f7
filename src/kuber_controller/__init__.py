"""
Kuber multi-tenancy controller.

Reconciles Tenant, Environment, TenantResourceQuota and TenantNetworkPolicy
declarations into namespaces, quotas, network policies and aggregated status.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
