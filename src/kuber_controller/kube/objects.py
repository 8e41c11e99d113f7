"""Helpers for object metadata: finalizers, owner references and labels."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..api.v1beta1 import KubeObject, OwnerReference


def now_rfc3339() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def add_finalizer(obj: KubeObject, finalizer: str) -> bool:
    """Add *finalizer*; return True when the object changed."""
    if finalizer in obj.metadata.finalizers:
        return False
    obj.metadata.finalizers.append(finalizer)
    return True


def remove_finalizer(obj: KubeObject, finalizer: str) -> bool:
    """Remove *finalizer*; return True when the object changed."""
    if finalizer not in obj.metadata.finalizers:
        return False
    obj.metadata.finalizers = [f for f in obj.metadata.finalizers if f != finalizer]
    return True


def controller_reference(owner: KubeObject) -> OwnerReference:
    return OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.metadata.uid or "",
        controller=True,
        block_owner_deletion=True,
    )


def _ref_fields(ref: OwnerReference | Mapping[str, Any]) -> tuple[str, str, str]:
    if isinstance(ref, OwnerReference):
        return ref.api_version, ref.kind, ref.name
    return ref.get("apiVersion", ""), ref.get("kind", ""), ref.get("name", "")


def exist_owner_ref(
    refs: Iterable[OwnerReference | Mapping[str, Any]], owner: OwnerReference
) -> bool:
    """True when *refs* already point at *owner* (matched on apiVersion, kind, name)."""
    wanted = _ref_fields(owner)
    return any(_ref_fields(ref) == wanted for ref in refs)


def set_controller_reference(obj: KubeObject, owner: OwnerReference) -> None:
    """Make *owner* the controlling reference of *obj*, replacing any previous one."""
    kept = [
        ref
        for ref in obj.metadata.owner_references
        if not ref.controller and _ref_fields(ref) != _ref_fields(owner)
    ]
    obj.metadata.owner_references = [*kept, owner.model_copy()]


def owner_reference_dict(owner: OwnerReference) -> dict[str, Any]:
    return owner.model_dump(by_alias=True, exclude_none=True)


def label_changed(origin: Mapping[str, str] | None, target: Mapping[str, str]) -> bool:
    """True when some label of *target* is missing from or different in *origin*."""
    origin = origin or {}
    return any(origin.get(key) != value for key, value in target.items())


def merge_labels(origin: Mapping[str, str] | None, target: Mapping[str, str]) -> dict[str, str]:
    merged = dict(origin or {})
    merged.update(target)
    return merged


def delete_labels(origin: Mapping[str, str] | None, keys: Iterable[str]) -> dict[str, str]:
    keys = set(keys)
    return {key: value for key, value in (origin or {}).items() if key not in keys}


def string_sets_equal(left: Iterable[str] | None, right: Iterable[str] | None) -> bool:
    """Order-insensitive comparison that still counts duplicates."""
    return Counter(left or ()) == Counter(right or ())


def metadata(obj: dict[str, Any]) -> dict[str, Any]:
    """The metadata block of a native object, created on demand."""
    return obj.setdefault("metadata", {})


def labels_of(obj: Any) -> dict[str, str]:
    if isinstance(obj, KubeObject):
        return obj.metadata.labels
    return (obj.get("metadata") or {}).get("labels") or {}


def name_of(obj: Any) -> str:
    if isinstance(obj, KubeObject):
        return obj.name
    return (obj.get("metadata") or {}).get("name", "")


def namespace_of(obj: Any) -> str:
    if isinstance(obj, KubeObject):
        return obj.metadata.namespace or ""
    return (obj.get("metadata") or {}).get("namespace") or ""
