"""
End-to-end tests of the full controller set against the in-memory cluster.

The manager's informers and controllers are driven by hand instead of by
threads: relist every informer, drain every queue, repeat until a round
neither dispatches nor reconciles anything.
"""

import pytest
from fakes import environment, tenant

from kuber_controller.api.constants import (
    FINALIZER_ENVIRONMENT,
    FINALIZER_GATEWAY,
    FINALIZER_NAMESPACE,
    FINALIZER_NETWORK_POLICY,
    FINALIZER_RESOURCE_QUOTA,
    LABEL_TENANT,
)
from kuber_controller.api.kinds import (
    ENVIRONMENT,
    NAMESPACE,
    NETWORK_POLICY,
    RESOURCE_QUOTA,
    TENANT,
    TENANT_NETWORK_POLICY,
    TENANT_RESOURCE_QUOTA,
)
from kuber_controller.controllers import setup_controllers
from kuber_controller.runtime import Manager

MAX_ROUNDS = 20


@pytest.fixture
def manager(cluster, settings):
    """Provide a manager with every controller registered and the gate open."""
    mgr = Manager(cluster, backoff_base_delay=0.0, backoff_max_delay=0.0)
    plugins = setup_controllers(mgr, settings)
    plugins.open()
    return mgr


def drive(mgr):
    """Run relist and reconcile rounds until the cluster stops changing."""
    for _ in range(MAX_ROUNDS):
        busy = False
        for informer in list(mgr.informers.values()):
            informer.relist()
        for controller in mgr.controllers:
            while controller.process_next(timeout=0):
                busy = True
        if not busy:
            return
    pytest.fail(f"controllers did not settle within {MAX_ROUNDS} rounds")


@pytest.mark.integration
class TestTenancyControlPlane:
    """Test that the controllers converge together."""

    def test_new_tenant_settles(self, cluster, manager):
        """Test that a new Tenant ends with its children, finalizers and a zero quota."""
        cluster.seed(TENANT, tenant("acme"))

        drive(manager)

        finalizers = cluster.get(TENANT, "acme").metadata.finalizers
        assert set(finalizers) == {
            FINALIZER_RESOURCE_QUOTA,
            FINALIZER_NETWORK_POLICY,
            FINALIZER_ENVIRONMENT,
            FINALIZER_GATEWAY,
        }
        quota = cluster.get(TENANT_RESOURCE_QUOTA, "acme")
        assert set(quota.spec.hard) <= set(quota.status.used)
        assert set(quota.status.used.values()) == {"0"}
        policy = cluster.get(TENANT_NETWORK_POLICY, "acme")
        assert policy.metadata.finalizers == [FINALIZER_NETWORK_POLICY]

    def test_settled_cluster_stays_quiet(self, cluster, manager):
        """Test that another round after convergence writes nothing."""
        cluster.seed(TENANT, tenant("acme"))
        cluster.seed(ENVIRONMENT, environment("dev", "acme"))
        drive(manager)
        cluster.reset_journal()

        drive(manager)

        assert cluster.writes(include_events=True) == []

    def test_environment_is_provisioned_and_counted(self, cluster, manager):
        """Test that an Environment yields a namespace, a quota and tenant status."""
        cluster.seed(TENANT, tenant("acme"))
        drive(manager)

        cluster.seed(
            ENVIRONMENT,
            environment("dev", "acme", resource_quota={"limits.cpu": "2"}),
        )
        drive(manager)

        assert cluster.exists(NAMESPACE, "acme-dev")
        quota = cluster.raw(RESOURCE_QUOTA, "default", "acme-dev")
        assert quota["metadata"]["labels"][LABEL_TENANT] == "acme"
        assert cluster.get(ENVIRONMENT, "dev").metadata.finalizers == [FINALIZER_NAMESPACE]
        status = cluster.get(TENANT, "acme").status
        assert status.environments == ["dev"]
        assert status.namespaces == ["acme-dev"]

    def test_isolation_reaches_new_environments(self, cluster, manager):
        """Test that an isolated tenant's policy follows a newly added Environment."""
        cluster.seed(TENANT, tenant("acme"))
        drive(manager)
        raw = cluster.raw(TENANT_NETWORK_POLICY, "acme")
        raw["spec"]["tenantIsolated"] = True
        cluster.update(TENANT_NETWORK_POLICY, raw)
        drive(manager)

        cluster.seed(ENVIRONMENT, environment("dev", "acme"))
        drive(manager)

        assert cluster.exists(NETWORK_POLICY, "kuber-tenant-isolation", "acme-dev")
