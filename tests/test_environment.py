"""Tests for the Environment reconciler."""

import pytest
from fakes import DELETION_TIMESTAMP, environment

from kuber_controller.api.constants import (
    FINALIZER_NAMESPACE,
    LABEL_ENVIRONMENT,
    LABEL_PROJECT,
    LABEL_TENANT,
)
from kuber_controller.api.kinds import ENVIRONMENT, LIMIT_RANGE, NAMESPACE, RESOURCE_QUOTA
from kuber_controller.controllers import EnvironmentReconciler
from kuber_controller.controllers.environment import limits_match
from kuber_controller.kube.errors import ApiError, PermanentError
from kuber_controller.runtime import DONE, Request

LIMITS = [{"type": "Container", "default": {"cpu": "500m"}, "defaultRequest": {"cpu": "100m"}}]


@pytest.fixture
def reconciler(cluster, recorder, retry_config):
    """Provide an Environment reconciler against the fake cluster."""
    return EnvironmentReconciler(cluster, recorder, retry_config)


def managed_namespace(name="acme-dev", extra_labels=None):
    labels = {LABEL_TENANT: "acme", LABEL_PROJECT: "web", LABEL_ENVIRONMENT: "dev"}
    labels.update(extra_labels or {})
    return {
        "metadata": {
            "name": name,
            "labels": labels,
            "ownerReferences": [
                {
                    "apiVersion": "go.kuber.io/v1beta1",
                    "kind": "Environment",
                    "name": "dev",
                    "uid": "u",
                }
            ],
        }
    }


def deleting_environment(policy):
    raw = environment("dev", "acme", namespace="acme-dev", delete_policy=policy)
    raw["metadata"]["finalizers"] = [FINALIZER_NAMESPACE]
    raw["metadata"]["deletionTimestamp"] = DELETION_TIMESTAMP
    return raw


@pytest.mark.unit
class TestActiveEnvironment:
    """Test provisioning of the namespace and its guard rails."""

    def test_provisions_namespace_quota_and_limits(self, cluster, reconciler):
        """Test the first reconcile of a new Environment."""
        cluster.seed(
            ENVIRONMENT,
            environment(
                "dev",
                "acme",
                namespace="acme-dev",
                resource_quota={"limits.cpu": "2", "limits.memory": "4Gi"},
                limit_range=LIMITS,
            ),
        )

        assert reconciler.reconcile(Request("dev")) == DONE

        expected_labels = {LABEL_TENANT: "acme", LABEL_PROJECT: "web", LABEL_ENVIRONMENT: "dev"}
        namespace = cluster.raw(NAMESPACE, "acme-dev")
        assert namespace["metadata"]["labels"] == expected_labels
        owner = namespace["metadata"]["ownerReferences"][0]
        assert (owner["kind"], owner["name"]) == ("Environment", "dev")

        quota = cluster.raw(RESOURCE_QUOTA, "default", "acme-dev")
        assert quota["spec"]["hard"] == {"limits.cpu": "2", "limits.memory": "4Gi"}
        assert quota["metadata"]["labels"] == expected_labels

        limit_range = cluster.raw(LIMIT_RANGE, "default", "acme-dev")
        assert limit_range["spec"]["limits"] == LIMITS

        env = cluster.get(ENVIRONMENT, "dev")
        assert env.metadata.finalizers == [FINALIZER_NAMESPACE]
        assert cluster.reasons() == ["Created", "Created", "Created"]

    def test_second_pass_writes_nothing(self, cluster, reconciler):
        """Test idempotence of a provisioned Environment."""
        cluster.seed(
            ENVIRONMENT,
            environment("dev", "acme", resource_quota={"limits.cpu": "2"}, limit_range=LIMITS),
        )
        reconciler.reconcile(Request("dev"))
        cluster.reset_journal()

        reconciler.reconcile(Request("dev"))
        assert cluster.writes(include_events=True) == []

    def test_adopts_existing_namespace(self, cluster, reconciler):
        """Test that a pre-existing namespace keeps its labels and gains ours."""
        cluster.seed(NAMESPACE, {"metadata": {"name": "acme-dev", "labels": {"team": "blue"}}})
        cluster.seed(ENVIRONMENT, environment("dev", "acme", namespace="acme-dev"))

        reconciler.reconcile(Request("dev"))

        labels = cluster.raw(NAMESPACE, "acme-dev")["metadata"]["labels"]
        assert labels["team"] == "blue"
        assert labels[LABEL_TENANT] == "acme"
        assert "Updated" in cluster.reasons()

    def test_quota_drift_is_corrected(self, cluster, reconciler):
        """Test that an edited quota is put back to the Environment's values."""
        cluster.seed(ENVIRONMENT, environment("dev", "acme", resource_quota={"limits.cpu": "2"}))
        reconciler.reconcile(Request("dev"))
        cluster.patch(
            RESOURCE_QUOTA, "default", {"spec": {"hard": {"limits.cpu": "64"}}}, "acme-dev"
        )

        reconciler.reconcile(Request("dev"))

        assert cluster.raw(RESOURCE_QUOTA, "default", "acme-dev")["spec"]["hard"] == {
            "limits.cpu": "2"
        }

    def test_equal_quota_in_other_notation_is_kept(self, cluster, reconciler):
        """Test that a semantically equal quota is not rewritten."""
        cluster.seed(ENVIRONMENT, environment("dev", "acme", resource_quota={"limits.cpu": "2"}))
        reconciler.reconcile(Request("dev"))
        cluster.patch(
            RESOURCE_QUOTA, "default", {"spec": {"hard": {"limits.cpu": "2000m"}}}, "acme-dev"
        )
        cluster.reset_journal()

        reconciler.reconcile(Request("dev"))
        assert cluster.writes() == []

    def test_server_defaulted_limit_range_is_kept(self, cluster, reconciler):
        """Test that defaults the API server adds to LimitRange items are not a change."""
        declared = [{"type": "Container", "max": {"cpu": "2"}}]
        cluster.seed(ENVIRONMENT, environment("dev", "acme", limit_range=declared))
        reconciler.reconcile(Request("dev"))

        stored = cluster.raw(LIMIT_RANGE, "default", "acme-dev")
        stored["spec"]["limits"] = [
            {
                "type": "Container",
                "max": {"cpu": "2000m"},
                "default": {"cpu": "2"},
                "defaultRequest": {"cpu": "2"},
            }
        ]
        cluster.update(LIMIT_RANGE, stored)
        cluster.reset_journal()

        for _ in range(3):
            reconciler.reconcile(Request("dev"))
        assert cluster.writes(include_events=True) == []

    def test_limit_range_drift_is_corrected(self, cluster, reconciler):
        """Test that a changed declared limit is put back."""
        declared = [{"type": "Container", "max": {"cpu": "2"}}]
        cluster.seed(ENVIRONMENT, environment("dev", "acme", limit_range=declared))
        reconciler.reconcile(Request("dev"))

        stored = cluster.raw(LIMIT_RANGE, "default", "acme-dev")
        stored["spec"]["limits"] = [{"type": "Container", "max": {"cpu": "8"}}]
        cluster.update(LIMIT_RANGE, stored)

        reconciler.reconcile(Request("dev"))

        assert cluster.raw(LIMIT_RANGE, "default", "acme-dev")["spec"]["limits"] == declared

    def test_limits_match(self):
        """Test the item comparison directly."""
        wanted = [{"type": "Pod", "max": {"memory": "1Gi"}}]
        assert limits_match([{"type": "Pod", "max": {"memory": "1024Mi"}, "min": {}}], wanted)
        assert not limits_match([{"type": "Container", "max": {"memory": "1Gi"}}], wanted)
        assert not limits_match([], wanted)
        assert not limits_match(wanted * 2, wanted)

    def test_labels_are_added_to_the_environment(self, cluster, reconciler):
        """Test that tenant and project labels are copied from the Environment fields."""
        raw = environment("dev", "acme")
        raw["metadata"]["labels"] = {}
        cluster.seed(ENVIRONMENT, raw)
        reconciler.reconcile(Request("dev"))
        labels = cluster.get(ENVIRONMENT, "dev").metadata.labels
        assert labels == {LABEL_TENANT: "acme", LABEL_PROJECT: "web"}

    def test_missing_namespace_is_permanent(self, cluster, reconciler):
        """Test that an Environment without a target namespace is rejected."""
        cluster.seed(ENVIRONMENT, environment("dev", "acme", namespace=""))
        with pytest.raises(PermanentError):
            reconciler.reconcile(Request("dev"))

    def test_missing_environment_is_a_no_op(self, cluster, reconciler):
        """Test that a request for a deleted Environment is not an error."""
        assert reconciler.reconcile(Request("ghost")) == DONE


@pytest.mark.unit
class TestEnvironmentDeletion:
    """Test the delete policies."""

    def test_delete_labels_releases_namespace(self, cluster, reconciler):
        """Test that deleteLabels keeps the namespace but strips what we added."""
        cluster.seed(NAMESPACE, managed_namespace(extra_labels={"team": "blue"}))
        cluster.seed(RESOURCE_QUOTA, {"metadata": {"name": "default", "namespace": "acme-dev"}})
        cluster.seed(LIMIT_RANGE, {"metadata": {"name": "default", "namespace": "acme-dev"}})
        cluster.seed(ENVIRONMENT, deleting_environment("deleteLabels"))

        assert reconciler.reconcile(Request("dev")) == DONE

        namespace = cluster.raw(NAMESPACE, "acme-dev")
        assert namespace["metadata"]["labels"] == {"team": "blue"}
        assert namespace["metadata"]["ownerReferences"] == []
        assert not cluster.exists(RESOURCE_QUOTA, "default", "acme-dev")
        assert not cluster.exists(LIMIT_RANGE, "default", "acme-dev")
        assert not cluster.exists(ENVIRONMENT, "dev")
        assert cluster.reasons() == ["Deleted"]

    def test_delete_namespace_removes_it(self, cluster, reconciler):
        """Test that deleteNamespace deletes the namespace object."""
        cluster.seed(NAMESPACE, managed_namespace())
        cluster.seed(ENVIRONMENT, deleting_environment("deleteNamespace"))

        reconciler.reconcile(Request("dev"))

        assert not cluster.exists(NAMESPACE, "acme-dev")
        assert not cluster.exists(ENVIRONMENT, "dev")

    def test_unknown_policy_falls_back_to_labels(self, cluster, reconciler):
        """Test that an unrecognised policy never deletes the namespace."""
        cluster.seed(NAMESPACE, managed_namespace())
        cluster.seed(ENVIRONMENT, deleting_environment("archive"))

        reconciler.reconcile(Request("dev"))

        assert cluster.exists(NAMESPACE, "acme-dev")
        assert cluster.raw(NAMESPACE, "acme-dev")["metadata"]["labels"] == {}

    def test_gone_namespace_still_releases_environment(self, cluster, reconciler):
        """Test that a namespace deleted out of band does not block deletion."""
        cluster.seed(ENVIRONMENT, deleting_environment("deleteLabels"))
        reconciler.reconcile(Request("dev"))
        assert not cluster.exists(ENVIRONMENT, "dev")
        assert cluster.events("Deleted") == []

    def test_failed_cleanup_keeps_finalizer(self, cluster, reconciler):
        """Test that a failure is reported and the Environment stays."""
        cluster.seed(NAMESPACE, managed_namespace())
        cluster.seed(ENVIRONMENT, deleting_environment("deleteLabels"))
        cluster.fail("update", NAMESPACE, ApiError("admission webhook denied", 500))

        with pytest.raises(ApiError):
            reconciler.reconcile(Request("dev"))

        assert cluster.get(ENVIRONMENT, "dev").metadata.finalizers == [FINALIZER_NAMESPACE]
        assert cluster.reasons() == ["FailedDelete"]

        reconciler.reconcile(Request("dev"))
        assert not cluster.exists(ENVIRONMENT, "dev")

    def test_without_our_finalizer_nothing_happens(self, cluster, reconciler):
        """Test that a deleting Environment we never claimed is left alone."""
        cluster.seed(NAMESPACE, managed_namespace())
        raw = deleting_environment("deleteNamespace")
        raw["metadata"]["finalizers"] = ["example.com/other"]
        cluster.seed(ENVIRONMENT, raw)
        reconciler.reconcile(Request("dev"))
        assert cluster.exists(NAMESPACE, "acme-dev")
        assert cluster.writes() == []
