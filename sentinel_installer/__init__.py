"""Sentinel Kube Installer - Declarative reconciliation of Kubernetes resources."""

from .cache import ReadWriteLock, ResourceCache
from .callbacks import (
    LAST_APPLIED_ANNOTATION,
    CallbackChain,
    HookPhase,
    InstallerCallbacks,
    LastAppliedAnnotation,
    decode_last_applied,
)
from .cluster import ClusterClient, ClusterConnection, KubeClusterClient, ResourceType
from .config import InstallerSettings, configure_logging, get_settings
from .discovery import DEFAULT_FILTERS, ResourceFilter, get_cluster_resources
from .errors import (
    CacheError,
    CallbackError,
    ClusterListError,
    GroupOperationError,
    InstallerError,
    InvalidResourceError,
    KindNotFoundError,
    MissingAnnotationError,
    PatchError,
    ReadinessTimeoutError,
    ResourceOperationError,
    ScopeResolutionError,
)
from .installer import Installer, KubeInstaller
from .models import (
    ClusterConfig,
    GroupVersionKind,
    ReconcileSummary,
    ResourceDocument,
    ResourceKey,
)
from .ordering import INSTALL_ORDER
from .patch import apply_patch, get_patch, match
from .readiness import (
    CustomResourceDefinitionReadiness,
    DeploymentReadiness,
    ReadinessChecker,
    ReadinessRegistry,
)
from .resources import ResourceList, ResourcesByKey, VersionedGroup
from .retry import RetryPolicy, with_retry

__version__ = "0.1.0"

__all__ = [
    # Installer
    "Installer",
    "KubeInstaller",
    "ReconcileSummary",
    # Cache
    "ResourceCache",
    "ReadWriteLock",
    # Cluster access
    "ClusterClient",
    "ClusterConnection",
    "KubeClusterClient",
    "ResourceType",
    "ResourceFilter",
    "DEFAULT_FILTERS",
    "get_cluster_resources",
    # Resource model
    "ClusterConfig",
    "GroupVersionKind",
    "ResourceDocument",
    "ResourceKey",
    "ResourceList",
    "ResourcesByKey",
    "VersionedGroup",
    "INSTALL_ORDER",
    # Diff and patch
    "get_patch",
    "apply_patch",
    "match",
    # Callbacks
    "CallbackChain",
    "HookPhase",
    "InstallerCallbacks",
    "LastAppliedAnnotation",
    "LAST_APPLIED_ANNOTATION",
    "decode_last_applied",
    # Readiness
    "ReadinessChecker",
    "ReadinessRegistry",
    "CustomResourceDefinitionReadiness",
    "DeploymentReadiness",
    # Retry
    "RetryPolicy",
    "with_retry",
    # Configuration
    "InstallerSettings",
    "configure_logging",
    "get_settings",
    # Errors
    "InstallerError",
    "InvalidResourceError",
    "MissingAnnotationError",
    "KindNotFoundError",
    "ScopeResolutionError",
    "PatchError",
    "CacheError",
    "ClusterListError",
    "ReadinessTimeoutError",
    "ResourceOperationError",
    "CallbackError",
    "GroupOperationError",
]
