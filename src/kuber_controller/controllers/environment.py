"""
Environment reconciler.

An Environment binds one namespace to a tenant and a project. While active
the reconciler keeps the namespace, its ResourceQuota and its LimitRange
labeled and shaped after the Environment. On deletion the ``deletePolicy``
decides whether the namespace is deleted or only released (labels and owner
references stripped, namespace kept).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import structlog

from ..api.constants import (
    DEFAULT_LIMIT_RANGE_NAME,
    DEFAULT_RESOURCE_QUOTA_NAME,
    DELETE_POLICY_LABELS,
    DELETE_POLICY_NAMESPACE,
    FINALIZER_NAMESPACE,
    LABEL_ENVIRONMENT,
    LABEL_PROJECT,
    LABEL_TENANT,
    REASON_CREATED,
    REASON_DELETED,
    REASON_FAILED_CREATE,
    REASON_FAILED_DELETE,
    REASON_FAILED_UPDATE,
    REASON_UPDATED,
)
from ..api.kinds import ENVIRONMENT, LIMIT_RANGE, NAMESPACE, RESOURCE_QUOTA, ResourceKind
from ..api.v1beta1 import Environment, OwnerReference
from ..kube.client import ResourceClient
from ..kube.errors import AlreadyExistsError, ApiError, ConflictError, NotFoundError, PermanentError
from ..kube.events import EventRecorder
from ..kube.objects import (
    add_finalizer,
    controller_reference,
    delete_labels,
    exist_owner_ref,
    label_changed,
    merge_labels,
    metadata,
    owner_reference_dict,
    remove_finalizer,
)
from ..kube.quantity import semantic_equal
from ..kube.retry import RetryConfig, retry_on_conflict
from ..runtime.controller import Reconciler
from ..runtime.manager import Manager
from ..runtime.request import DONE, Request, Result

logger = structlog.get_logger(__name__)


def environment_labels(env: Environment) -> dict[str, str]:
    """Labels stamped on everything an Environment manages."""
    return {
        LABEL_TENANT: env.spec.tenant,
        LABEL_PROJECT: env.spec.project,
        LABEL_ENVIRONMENT: env.name,
    }


def resource_quota_name(env: Environment) -> str:
    return env.spec.resource_quota_name or DEFAULT_RESOURCE_QUOTA_NAME


def limit_item_matches(current: Mapping[str, Any], wanted: Mapping[str, Any]) -> bool:
    """Compare only the keys *wanted* declares; resource maps compare by quantity."""
    for key, value in wanted.items():
        if isinstance(value, Mapping):
            if not semantic_equal(current.get(key), value):
                return False
        elif current.get(key) != value:
            return False
    return True


def limits_match(current: list[Any] | None, wanted: list[dict[str, Any]]) -> bool:
    """
    Whether a stored LimitRange already carries the declared items.

    The API server fills `default` and `defaultRequest` from `max` and `min`
    and canonicalises quantities, so the stored items are a superset of the
    declared ones.
    """
    current = current or []
    if len(current) != len(wanted):
        return False
    return all(
        isinstance(have, Mapping) and limit_item_matches(have, want)
        for have, want in zip(current, wanted)
    )


class EnvironmentReconciler(Reconciler):
    def __init__(
        self,
        client: ResourceClient,
        recorder: EventRecorder,
        retry_config: RetryConfig | None = None,
    ):
        self.client = client
        self.recorder = recorder
        self.retry_config = retry_config

    def reconcile(self, request: Request) -> Result:
        try:
            env = self.client.get(ENVIRONMENT, request.name)
        except NotFoundError:
            return DONE

        labels = environment_labels(env)
        if env.deleting:
            if FINALIZER_NAMESPACE not in env.metadata.finalizers:
                return DONE
            self.handle_delete(env, labels)
            self.drop_finalizer(env.name)
            return DONE

        if not env.spec.namespace:
            raise PermanentError(f"environment {env.name} has no target namespace")

        self.ensure_metadata(env)
        owner = controller_reference(env)
        self.ensure_namespace(env, labels, owner)
        self.ensure_resource_quota(env, labels)
        if env.spec.limit_range:
            self.ensure_limit_range(env, labels)
        return DONE

    # Active path

    def ensure_metadata(self, env: Environment) -> None:
        """Keep the namespace finalizer and the tenant/project labels on the Environment."""
        wanted = {
            key: value
            for key, value in ((LABEL_TENANT, env.spec.tenant), (LABEL_PROJECT, env.spec.project))
            if value
        }
        if FINALIZER_NAMESPACE in env.metadata.finalizers and not label_changed(
            env.metadata.labels, wanted
        ):
            return

        def write() -> None:
            current = self.client.get(ENVIRONMENT, env.name, live=True)
            changed = add_finalizer(current, FINALIZER_NAMESPACE)
            if label_changed(current.metadata.labels, wanted):
                current.metadata.labels = merge_labels(current.metadata.labels, wanted)
                changed = True
            if changed:
                self.client.update(ENVIRONMENT, current)

        retry_on_conflict(write, self.retry_config)
        logger.info("environment.metadata_updated", environment=env.name)

    def ensure_namespace(
        self, env: Environment, labels: dict[str, str], owner: OwnerReference
    ) -> None:
        name = env.spec.namespace

        def mutate(namespace: dict[str, Any]) -> bool:
            meta = metadata(namespace)
            changed = False
            if label_changed(meta.get("labels"), labels):
                meta["labels"] = merge_labels(meta.get("labels"), labels)
                changed = True
            refs = meta.get("ownerReferences") or []
            if not exist_owner_ref(refs, owner):
                meta["ownerReferences"] = [*refs, owner_reference_dict(owner)]
                changed = True
            return changed

        self._ensure(env, NAMESPACE, name, None, {"metadata": {"name": name}}, mutate)

    def ensure_resource_quota(self, env: Environment, labels: dict[str, str]) -> None:
        hard = dict(env.spec.resource_quota)

        def mutate(quota: dict[str, Any]) -> bool:
            meta = metadata(quota)
            changed = False
            if label_changed(meta.get("labels"), labels):
                meta["labels"] = merge_labels(meta.get("labels"), labels)
                changed = True
            spec = quota.setdefault("spec", {})
            if hard and not semantic_equal(spec.get("hard"), hard):
                spec["hard"] = hard
                changed = True
            return changed

        name = resource_quota_name(env)
        namespace = env.spec.namespace
        base = {"metadata": {"name": name, "namespace": namespace}, "spec": {}}
        self._ensure(env, RESOURCE_QUOTA, name, namespace, base, mutate)

    def ensure_limit_range(self, env: Environment, labels: dict[str, str]) -> None:
        limits = [dict(item) for item in env.spec.limit_range]

        def mutate(limit_range: dict[str, Any]) -> bool:
            meta = metadata(limit_range)
            changed = False
            if label_changed(meta.get("labels"), labels):
                meta["labels"] = merge_labels(meta.get("labels"), labels)
                changed = True
            spec = limit_range.setdefault("spec", {})
            if not limits_match(spec.get("limits"), limits):
                spec["limits"] = limits
                changed = True
            return changed

        namespace = env.spec.namespace
        base = {"metadata": {"name": DEFAULT_LIMIT_RANGE_NAME, "namespace": namespace}, "spec": {}}
        self._ensure(env, LIMIT_RANGE, DEFAULT_LIMIT_RANGE_NAME, namespace, base, mutate)

    def _ensure(
        self,
        env: Environment,
        kind: ResourceKind,
        name: str,
        namespace: str | None,
        base: dict[str, Any],
        mutate: Callable[[dict[str, Any]], bool],
    ) -> None:
        """Create *kind*/*name* from *base* + *mutate*, or apply *mutate* to the existing object."""
        try:
            existing = self.client.get(kind, name, namespace)
        except NotFoundError:
            mutate(base)
            try:
                self.client.create(kind, base)
            except AlreadyExistsError:
                return
            except ApiError as exc:
                self.recorder.warning(
                    env, REASON_FAILED_CREATE, f"Failed to create {kind.kind} {name}: {exc}"
                )
                raise
            logger.info("environment.created", environment=env.name, kind=kind.kind, name=name)
            self.recorder.normal(env, REASON_CREATED, f"Successfully created {kind.kind} {name}")
            return

        if not mutate(existing):
            return

        def write() -> None:
            current = self.client.get(kind, name, namespace, live=True)
            if mutate(current):
                self.client.update(kind, current)

        try:
            retry_on_conflict(write, self.retry_config)
        except ConflictError:
            raise
        except ApiError as exc:
            self.recorder.warning(
                env, REASON_FAILED_UPDATE, f"Failed to update {kind.kind} {name}: {exc}"
            )
            raise
        logger.info("environment.updated", environment=env.name, kind=kind.kind, name=name)
        self.recorder.normal(env, REASON_UPDATED, f"Successfully updated {kind.kind} {name}")

    # Deleting path

    def handle_delete(self, env: Environment, labels: dict[str, str]) -> None:
        policy = env.spec.delete_policy
        if policy not in (DELETE_POLICY_NAMESPACE, DELETE_POLICY_LABELS):
            logger.warning(
                "environment.unknown_delete_policy",
                environment=env.name,
                policy=policy,
                fallback=DELETE_POLICY_LABELS,
            )
            policy = DELETE_POLICY_LABELS

        namespace = env.spec.namespace
        if not namespace:
            return
        try:
            if policy == DELETE_POLICY_NAMESPACE:
                done = self._delete_namespace(namespace)
                message = f"Successfully deleted namespace {namespace}"
            else:
                done = self._release_namespace(env, namespace, labels)
                message = f"Successfully deleted environment labels for namespace {namespace}"
        except ApiError as exc:
            self.recorder.warning(
                env,
                REASON_FAILED_DELETE,
                f"Failed to clean up namespace {namespace} with policy {policy}: {exc}",
            )
            raise
        if done:
            logger.info("environment.namespace_cleaned", environment=env.name, policy=policy)
            self.recorder.normal(env, REASON_DELETED, message)

    def _delete_namespace(self, namespace: str) -> bool:
        try:
            self.client.delete(NAMESPACE, namespace)
        except NotFoundError:
            return False
        return True

    def _release_namespace(self, env: Environment, namespace: str, labels: dict[str, str]) -> bool:
        def strip() -> bool:
            try:
                current = self.client.get(NAMESPACE, namespace, live=True)
            except NotFoundError:
                return False
            meta = metadata(current)
            meta["labels"] = delete_labels(meta.get("labels"), labels)
            meta["ownerReferences"] = []
            self.client.update(NAMESPACE, current)
            return True

        released = retry_on_conflict(strip, self.retry_config)
        if not released:
            return False
        for kind, name in (
            (RESOURCE_QUOTA, resource_quota_name(env)),
            (LIMIT_RANGE, DEFAULT_LIMIT_RANGE_NAME),
        ):
            try:
                self.client.delete(kind, name, namespace)
            except NotFoundError:
                continue
        return True

    def drop_finalizer(self, name: str) -> None:
        def remove() -> None:
            current = self.client.get(ENVIRONMENT, name, live=True)
            if remove_finalizer(current, FINALIZER_NAMESPACE):
                self.client.update(ENVIRONMENT, current)

        try:
            retry_on_conflict(remove, self.retry_config)
        except NotFoundError:
            return
        logger.info("environment.finalizer_removed", environment=name)

    def setup_with_manager(self, mgr: Manager) -> None:
        mgr.new_controller("environment", self, ENVIRONMENT)
