"""Install ordering of Kubernetes kinds."""

from typing import Optional

from .models import GroupVersionKind, ResourceDocument

# Kinds in the order they are installed; deletes walk it backwards.
# Kinds not listed here are installed after every listed kind.
INSTALL_ORDER: tuple[str, ...] = (
    "Namespace",
    "NetworkPolicy",
    "ResourceQuota",
    "LimitRange",
    "PodSecurityPolicy",
    "PodDisruptionBudget",
    "Secret",
    "ConfigMap",
    "StorageClass",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "ServiceAccount",
    "CustomResourceDefinition",
    "ClusterRole",
    "ClusterRoleList",
    "ClusterRoleBinding",
    "ClusterRoleBindingList",
    "Role",
    "RoleList",
    "RoleBinding",
    "RoleBindingList",
    "Service",
    "DaemonSet",
    "Pod",
    "ReplicationController",
    "ReplicaSet",
    "Deployment",
    "HorizontalPodAutoscaler",
    "StatefulSet",
    "Job",
    "CronJob",
    "Ingress",
    "APIService",
)

_INSTALL_POSITION = {kind: position for position, kind in enumerate(INSTALL_ORDER)}


def install_order(kind: str) -> Optional[int]:
    """Position of a kind in the install order, or None if it is not listed."""
    return _INSTALL_POSITION.get(kind)


def kind_sort_key(kind: str) -> tuple[int, int, str]:
    position = install_order(kind)
    if position is None:
        return (1, 0, kind)
    return (0, position, kind)


def resource_sort_key(resource: ResourceDocument) -> tuple:
    """
    Sort key placing resources in install order.

    Listed kinds come first by table position, unlisted kinds follow
    lexically; resources of the same kind are ordered by namespace + name.
    """
    return (*kind_sort_key(resource.kind), resource.namespace + resource.name)


def group_sort_key(gvk: GroupVersionKind) -> tuple:
    return (*kind_sort_key(gvk.kind), gvk.group, gvk.version)
