"""Cluster access: resource client, errors, quantities and metadata helpers."""

from .client import (
    KubernetesResourceClient,
    ResourceClient,
    WatchEvent,
    label_selector,
    matches_labels,
)
from .errors import (
    AlreadyExistsError,
    ApiError,
    ConflictError,
    GoneError,
    InvalidError,
    NotFoundError,
    PermanentError,
)
from .events import EventRecorder
from .retry import ExponentialBackoff, RetryConfig, retry_on_conflict

__all__ = [
    "KubernetesResourceClient",
    "ResourceClient",
    "WatchEvent",
    "label_selector",
    "matches_labels",
    "AlreadyExistsError",
    "ApiError",
    "ConflictError",
    "GoneError",
    "InvalidError",
    "NotFoundError",
    "PermanentError",
    "EventRecorder",
    "ExponentialBackoff",
    "RetryConfig",
    "retry_on_conflict",
]
