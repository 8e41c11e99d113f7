"""Shared constants: API group, label keys, finalizer tokens and event reasons."""

GROUP_NAME = "go.kuber.io"
VERSION = "v1beta1"
API_VERSION = f"{GROUP_NAME}/{VERSION}"

LABEL_TENANT = f"{GROUP_NAME}/tenant"
LABEL_PROJECT = f"{GROUP_NAME}/project"
LABEL_ENVIRONMENT = f"{GROUP_NAME}/environment"
LABEL_APPLICATION = f"{GROUP_NAME}/application"
LABEL_ZONE = f"{GROUP_NAME}/zone"
LABEL_PLUGINS = f"{GROUP_NAME}/plugins"

# Label keys the informer caches index on.
INDEXED_LABELS = (LABEL_TENANT, LABEL_PROJECT, LABEL_ENVIRONMENT)

NAMESPACE_SYSTEM = "kuber"
NAMESPACE_GATEWAY = "kuber-gateway"

FINALIZER_NAMESPACE = f"finalizer.{GROUP_NAME}/namespace"
FINALIZER_RESOURCE_QUOTA = f"finalizer.{GROUP_NAME}/resourcequota"
FINALIZER_GATEWAY = f"finalizer.{GROUP_NAME}/gateway"
FINALIZER_NETWORK_POLICY = f"finalizer.{GROUP_NAME}/netWorkPolicy"
FINALIZER_LIMIT_RANGE = f"finalizer.{GROUP_NAME}/limitRange"
FINALIZER_ENVIRONMENT = f"finalizer.{GROUP_NAME}/environment"

DELETE_POLICY_NAMESPACE = "deleteNamespace"
DELETE_POLICY_LABELS = "deleteLabels"

# Event reasons
REASON_FAILED_CREATE_SUB_RESOURCE = "FailedCreateSubResource"
REASON_FAILED_CREATE = "FailedCreate"
REASON_FAILED_DELETE = "FailedDelete"
REASON_FAILED_UPDATE = "FailedUpdate"
REASON_CREATED = "Created"
REASON_DELETED = "Deleted"
REASON_UPDATED = "Updated"
REASON_UNKNOWN_ERROR = "UnknownError"

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

# Optional components detected from installed CRDs
COMPONENT_NGINX = "nginx"
COMPONENT_ISTIO = "istio"

DEFAULT_RESOURCE_QUOTA_NAME = "default"
DEFAULT_LIMIT_RANGE_NAME = "default"
