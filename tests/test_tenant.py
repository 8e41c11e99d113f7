"""Tests for the Tenant reconciler: children, finalizers, status and ordered cleanup."""

import pytest
from fakes import (
    DELETION_TIMESTAMP,
    environment,
    tenant,
    tenant_network_policy,
    tenant_resource_quota,
)

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
    TENANT,
    TENANT_GATEWAY,
    TENANT_NETWORK_POLICY,
    TENANT_RESOURCE_QUOTA,
)
from kuber_controller.controllers import EnvironmentReconciler, TenantReconciler
from kuber_controller.controllers.tenant import TENANT_FINALIZERS, default_tenant_resource_quota
from kuber_controller.kube.errors import ApiError
from kuber_controller.runtime import DONE, Request


@pytest.fixture
def reconciler(cluster, recorder, retry_config):
    """Provide a Tenant reconciler against the fake cluster."""
    return TenantReconciler(cluster, recorder, retry_config)


def deleting_tenant(name="acme", finalizers=TENANT_FINALIZERS):
    raw = tenant(name)
    raw["metadata"]["finalizers"] = list(finalizers)
    raw["metadata"]["deletionTimestamp"] = DELETION_TIMESTAMP
    return raw


def gateway(name, tenant_name):
    return {
        "metadata": {"name": name, "labels": {LABEL_TENANT: tenant_name}},
        "spec": {"type": "nginx"},
    }


@pytest.mark.unit
class TestActiveTenant:
    """Test the converge path of a live Tenant."""

    def test_new_tenant_converges_in_one_pass(self, cluster, reconciler):
        """Test that quota, policy and every finalizer exist after a single reconcile."""
        cluster.seed(TENANT, tenant("acme"))

        assert reconciler.reconcile(Request("acme")) == DONE

        quota = cluster.get(TENANT_RESOURCE_QUOTA, "acme")
        assert quota.spec.hard == default_tenant_resource_quota()
        assert quota.metadata.labels == {LABEL_TENANT: "acme"}
        owner = quota.metadata.owner_references[0]
        assert (owner.kind, owner.name, owner.controller) == ("Tenant", "acme", True)

        policy = cluster.get(TENANT_NETWORK_POLICY, "acme")
        assert policy.spec.tenant_isolated is False
        assert policy.metadata.owner_references[0].name == "acme"

        finalizers = cluster.get(TENANT, "acme").metadata.finalizers
        assert set(finalizers) == {
            FINALIZER_RESOURCE_QUOTA,
            FINALIZER_NETWORK_POLICY,
            FINALIZER_ENVIRONMENT,
            FINALIZER_GATEWAY,
        }
        assert cluster.reasons() == ["Created", "Created"]

    def test_second_pass_writes_nothing(self, cluster, reconciler):
        """Test idempotence: an unchanged Tenant costs no writes."""
        cluster.seed(TENANT, tenant("acme"))
        cluster.seed(ENVIRONMENT, environment("dev", "acme"))
        reconciler.reconcile(Request("acme"))
        cluster.reset_journal()

        for _ in range(3):
            assert reconciler.reconcile(Request("acme")) == DONE
        assert cluster.writes(include_events=True) == []

    def test_missing_tenant_is_a_no_op(self, cluster, reconciler):
        """Test that a request for a deleted Tenant is not an error."""
        assert reconciler.reconcile(Request("ghost")) == DONE
        assert cluster.writes() == []

    def test_status_lists_environments_and_namespaces(self, cluster, reconciler):
        """Test the status report of labeled Environments."""
        cluster.seed(TENANT, tenant("acme"))
        cluster.seed(ENVIRONMENT, environment("dev", "acme", namespace="acme-dev"))
        cluster.seed(ENVIRONMENT, environment("prod", "acme", namespace="acme-prod"))
        cluster.seed(ENVIRONMENT, environment("qa", "globex"))

        reconciler.reconcile(Request("acme"))

        status = cluster.get(TENANT, "acme").status
        assert sorted(status.environments) == ["dev", "prod"]
        assert sorted(status.namespaces) == ["acme-dev", "acme-prod"]
        assert status.last_update_time

    def test_status_comparison_ignores_order(self, cluster, reconciler):
        """Test that a reordered but equal status is not rewritten."""
        raw = tenant("acme")
        raw["metadata"]["finalizers"] = list(TENANT_FINALIZERS)
        raw["status"] = {"environments": ["prod", "dev"], "namespaces": ["acme-prod", "acme-dev"]}
        cluster.seed(TENANT, raw)
        cluster.seed(ENVIRONMENT, environment("dev", "acme", namespace="acme-dev"))
        cluster.seed(ENVIRONMENT, environment("prod", "acme", namespace="acme-prod"))
        reconciler.reconcile(Request("acme"))
        assert cluster.writes(TENANT) == []

    def test_drifted_child_is_repaired(self, cluster, reconciler):
        """Test that lost owner references and labels are restored."""
        cluster.seed(TENANT, tenant("acme"))
        reconciler.reconcile(Request("acme"))
        cluster.patch(
            TENANT_RESOURCE_QUOTA, "acme", {"metadata": {"ownerReferences": None, "labels": None}}
        )
        cluster.reset_journal()

        reconciler.reconcile(Request("acme"))

        quota = cluster.get(TENANT_RESOURCE_QUOTA, "acme")
        assert quota.metadata.labels[LABEL_TENANT] == "acme"
        assert quota.metadata.owner_references[0].name == "acme"
        assert [w.verb for w in cluster.writes()] == ["update"]
        assert "Updated" in cluster.reasons()

    def test_existing_quota_spec_is_left_alone(self, cluster, reconciler):
        """Test that a tenant's customised quota is not reset to defaults."""
        cluster.seed(TENANT, tenant("acme"))
        cluster.seed(TENANT_RESOURCE_QUOTA, tenant_resource_quota("acme", {"limits.cpu": "8"}))
        reconciler.reconcile(Request("acme"))
        assert cluster.get(TENANT_RESOURCE_QUOTA, "acme").spec.hard == {"limits.cpu": "8"}

    def test_failed_child_creation_records_warning(self, cluster, reconciler):
        """Test that a failed sub-resource is reported and the reconcile fails."""
        cluster.seed(TENANT, tenant("acme"))
        cluster.fail("create", TENANT_NETWORK_POLICY, ApiError("quota exceeded", 403))

        with pytest.raises(ApiError):
            reconciler.reconcile(Request("acme"))
        assert cluster.reasons() == ["Created", "FailedCreateSubResource"]

        # Partial progress is completed by the retry.
        reconciler.reconcile(Request("acme"))
        assert cluster.exists(TENANT_NETWORK_POLICY, "acme")
        assert len(cluster.writes(TENANT_RESOURCE_QUOTA)) == 1

    def test_conflicting_finalizer_write_is_retried(self, cluster, reconciler):
        """Test that a stale Tenant read still converges."""
        cluster.seed(TENANT, tenant("acme"))
        stale = cluster.get(TENANT, "acme")
        cluster.touch(TENANT, "acme")
        reconciler.ensure_finalizers(stale)
        assert set(cluster.get(TENANT, "acme").metadata.finalizers) == set(TENANT_FINALIZERS)


@pytest.mark.unit
class TestTenantDeletion:
    """Test the ordered, resumable cleanup of a deleted Tenant."""

    def test_waits_for_environments_before_anything_else(
        self, cluster, reconciler, recorder, retry_config
    ):
        """Test that Environments are removed before the other finalizers are cleared."""
        cluster.seed(TENANT, deleting_tenant())
        env = environment("dev", "acme")
        env["metadata"]["finalizers"] = [FINALIZER_NAMESPACE]
        cluster.seed(ENVIRONMENT, env)
        cluster.seed(TENANT_RESOURCE_QUOTA, tenant_resource_quota("acme", {}))

        result = reconciler.reconcile(Request("acme"))

        assert result.requeue_after == reconciler.environment_wait
        assert cluster.get(ENVIRONMENT, "dev").deleting
        assert set(cluster.get(TENANT, "acme").metadata.finalizers) == set(TENANT_FINALIZERS)
        assert cluster.exists(TENANT_RESOURCE_QUOTA, "acme")

        EnvironmentReconciler(cluster, recorder, retry_config).reconcile(Request("dev"))
        assert not cluster.exists(ENVIRONMENT, "dev")

        assert reconciler.reconcile(Request("acme")) == DONE
        assert not cluster.exists(TENANT, "acme")
        assert not cluster.exists(TENANT_RESOURCE_QUOTA, "acme")

    def test_cleanup_order(self, cluster, reconciler):
        """Test that children are cleaned up environment, quota, policy, gateway."""
        cluster.seed(TENANT, deleting_tenant())
        cluster.seed(ENVIRONMENT, environment("dev", "acme"))
        cluster.seed(TENANT_RESOURCE_QUOTA, tenant_resource_quota("acme", {}))
        cluster.seed(TENANT_NETWORK_POLICY, tenant_network_policy("acme"))
        cluster.seed(TENANT_GATEWAY, gateway("acme-gw", "acme"))
        cluster.seed(TENANT_GATEWAY, gateway("other-gw", "globex"))

        assert reconciler.reconcile(Request("acme")) == DONE

        touched = [w.kind for w in cluster.writes() if w.kind != TENANT.kind]
        order = list(dict.fromkeys(touched))
        assert order == [
            ENVIRONMENT.kind,
            TENANT_RESOURCE_QUOTA.kind,
            TENANT_NETWORK_POLICY.kind,
            TENANT_GATEWAY.kind,
        ]
        assert not cluster.exists(TENANT, "acme")
        assert not cluster.exists(TENANT_GATEWAY, "acme-gw")
        assert cluster.exists(TENANT_GATEWAY, "other-gw")
        assert cluster.reasons().count("Deleted") == 4

    def test_children_are_released_before_deletion(self, cluster, reconciler):
        """Test that quota and policy lose their owner references, then get deleted."""
        cluster.seed(TENANT, deleting_tenant(finalizers=[FINALIZER_NETWORK_POLICY]))
        policy = tenant_network_policy("acme", finalizers=(FINALIZER_NETWORK_POLICY,))
        policy["metadata"]["ownerReferences"] = [
            {"apiVersion": "go.kuber.io/v1beta1", "kind": "Tenant", "name": "acme", "uid": "u"}
        ]
        cluster.seed(TENANT_NETWORK_POLICY, policy)

        reconciler.reconcile(Request("acme"))

        remaining = cluster.get(TENANT_NETWORK_POLICY, "acme")
        assert remaining.deleting
        assert remaining.metadata.owner_references == []
        verbs = [w.verb for w in cluster.writes(TENANT_NETWORK_POLICY)]
        assert verbs == ["patch", "delete"]

    def test_resumes_from_partial_finalizers(self, cluster, reconciler):
        """Test that only the steps whose finalizer remains are run."""
        cluster.seed(
            TENANT, deleting_tenant(finalizers=[FINALIZER_NETWORK_POLICY, FINALIZER_GATEWAY])
        )
        cluster.seed(ENVIRONMENT, environment("dev", "acme"))
        cluster.seed(TENANT_RESOURCE_QUOTA, tenant_resource_quota("acme", {}))

        assert reconciler.reconcile(Request("acme")) == DONE

        assert cluster.exists(ENVIRONMENT, "dev")
        assert cluster.exists(TENANT_RESOURCE_QUOTA, "acme")
        assert not cluster.exists(TENANT, "acme")

    def test_failed_step_keeps_its_finalizer(self, cluster, reconciler):
        """Test that a crash mid-cleanup resumes where it stopped."""
        cluster.seed(TENANT, deleting_tenant())
        cluster.seed(TENANT_RESOURCE_QUOTA, tenant_resource_quota("acme", {}))
        cluster.seed(TENANT_NETWORK_POLICY, tenant_network_policy("acme"))
        cluster.fail("delete", TENANT_NETWORK_POLICY, ApiError("etcd timeout", 500))

        with pytest.raises(ApiError):
            reconciler.reconcile(Request("acme"))

        finalizers = cluster.get(TENANT, "acme").metadata.finalizers
        assert set(finalizers) == {FINALIZER_NETWORK_POLICY, FINALIZER_GATEWAY}
        assert not cluster.exists(TENANT_RESOURCE_QUOTA, "acme")
        assert cluster.events("FailedDelete")

        assert reconciler.reconcile(Request("acme")) == DONE
        assert not cluster.exists(TENANT, "acme")
        assert not cluster.exists(TENANT_NETWORK_POLICY, "acme")

    def test_missing_children_do_not_block_cleanup(self, cluster, reconciler):
        """Test that already removed children count as cleaned up."""
        cluster.seed(TENANT, deleting_tenant())
        assert reconciler.reconcile(Request("acme")) == DONE
        assert not cluster.exists(TENANT, "acme")
