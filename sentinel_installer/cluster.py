"""Kubernetes cluster access for the installer."""

import base64
import logging
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from kubernetes import client, config, dynamic
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError
from urllib3.exceptions import HTTPError as TransportError

from .errors import KindNotFoundError
from .models import ClusterConfig, GroupVersionKind, ResourceDocument

logger = logging.getLogger(__name__)

# verbs a resource type must support to be managed by the installer
CRUD_VERBS = ("create", "list", "watch", "delete")

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def _status(exc: BaseException) -> Optional[int]:
    if isinstance(exc, (ApiException, DynamicApiError)):
        return exc.status
    return None


def is_not_found(exc: BaseException) -> bool:
    return _status(exc) == 404


def is_already_exists(exc: BaseException) -> bool:
    return _status(exc) == 409


def is_conflict(exc: BaseException) -> bool:
    # the API server reports AlreadyExists and Conflict with the same status
    return _status(exc) == 409


def is_transient(exc: BaseException) -> bool:
    """
    Return True for errors worth retrying.

    Covers throttling, server-side failures and connection problems.
    """
    status = _status(exc)
    if status is not None:
        # status 0 is reported when no response was received
        return status == 0 or status in TRANSIENT_STATUS_CODES
    return isinstance(exc, (OSError, TransportError))


@dataclass(frozen=True)
class ResourceType:
    """A listable API resource type (group, version, plural resource name)."""

    group: str
    version: str
    resource: str
    kind: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind(group=self.group, version=self.version, kind=self.kind)

    def __str__(self) -> str:
        return f"{self.api_version}, Resource={self.resource}"


class ClusterClient(ABC):
    """
    Blocking access to one cluster's API.

    The installer calls these methods from worker threads.
    """

    @abstractmethod
    def list_resource_types(self) -> list[ResourceType]:
        """List resource types supporting create, list, watch and delete."""

    @abstractmethod
    def list_resources(
        self, resource_type: ResourceType, namespace: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """List all objects of one type, optionally in one namespace."""

    @abstractmethod
    def is_namespaced(self, gvk: GroupVersionKind) -> bool:
        """
        Look up the scope of a kind in the REST mapping.

        Raises:
            KindNotFoundError: If the API server does not serve the kind
        """

    @abstractmethod
    def get(self, resource: ResourceDocument) -> dict[str, Any]:
        """Fetch the live object for a resource."""

    @abstractmethod
    def create(self, resource: ResourceDocument) -> dict[str, Any]:
        """Create a resource."""

    @abstractmethod
    def update(self, resource: ResourceDocument) -> dict[str, Any]:
        """Replace a resource."""

    @abstractmethod
    def delete(self, resource: ResourceDocument) -> None:
        """Delete a resource."""

    @abstractmethod
    def refresh_mappings(self) -> None:
        """Drop cached REST mappings so newly registered kinds resolve."""


class ClusterConnection:
    """Represents a connection to a single Kubernetes cluster."""

    def __init__(self, cluster_config: ClusterConfig):
        """
        Initialize cluster connection.

        Args:
            cluster_config: Cluster configuration

        Raises:
            ValueError: If kubeconfig is invalid
        """
        self.config = cluster_config
        self._api_client: Optional[ApiClient] = None
        self._dynamic: Optional[dynamic.DynamicClient] = None
        self._temp_kubeconfig: Optional[Path] = None

        self._initialize_client()

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        configuration = client.Configuration()
        try:
            if self.config.kubeconfig_data:
                # Decode base64 kubeconfig and write to temp file
                kubeconfig_content = base64.b64decode(self.config.kubeconfig_data)
                with tempfile.NamedTemporaryFile(mode="wb", delete=False) as f:
                    f.write(kubeconfig_content)
                    self._temp_kubeconfig = Path(f.name)
                config.load_kube_config(
                    config_file=str(self._temp_kubeconfig),
                    context=self.config.context,
                    client_configuration=configuration,
                )
            elif self.config.kubeconfig_path:
                config.load_kube_config(
                    config_file=str(Path(self.config.kubeconfig_path).expanduser()),
                    context=self.config.context,
                    client_configuration=configuration,
                )
            else:
                # Try in-cluster config (for when running inside K8s)
                config.load_incluster_config(client_configuration=configuration)

            self._api_client = ApiClient(configuration)
            self._dynamic = dynamic.DynamicClient(self._api_client)

        except Exception as e:
            self.close()
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    @property
    def dynamic(self) -> dynamic.DynamicClient:
        """Get DynamicClient instance."""
        if not self._dynamic:
            raise RuntimeError("Cluster connection not initialized")
        return self._dynamic

    def close(self):
        """Close the cluster connection and clean up resources."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

        # Clean up temporary kubeconfig file
        if self._temp_kubeconfig and self._temp_kubeconfig.exists():
            self._temp_kubeconfig.unlink()
            self._temp_kubeconfig = None

        self._dynamic = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class KubeClusterClient(ClusterClient):
    """ClusterClient backed by the kubernetes dynamic client."""

    def __init__(self, connection: ClusterConnection):
        """
        Initialize cluster client.

        Args:
            connection: Cluster connection
        """
        self.connection = connection

    @classmethod
    def from_config(cls, cluster_config: ClusterConfig) -> "KubeClusterClient":
        return cls(ClusterConnection(cluster_config))

    @property
    def _dynamic(self) -> dynamic.DynamicClient:
        return self.connection.dynamic

    def _resource(self, gvk: GroupVersionKind) -> Any:
        try:
            return self._dynamic.resources.get(api_version=gvk.api_version, kind=gvk.kind)
        except ResourceNotFoundError as e:
            raise KindNotFoundError(f"no REST mapping for {gvk}") from e

    def list_resource_types(self) -> list[ResourceType]:
        seen: set[tuple[str, str, str]] = set()
        resource_types: list[ResourceType] = []
        for res in self._dynamic.resources.search():
            verbs = getattr(res, "verbs", None) or []
            name = getattr(res, "name", None)
            if not name or "/" in name:
                continue
            if not all(verb in verbs for verb in CRUD_VERBS):
                continue
            identity = (res.group or "", res.api_version, name)
            if identity in seen:
                continue
            seen.add(identity)
            resource_types.append(
                ResourceType(
                    group=res.group or "",
                    version=res.api_version,
                    resource=name,
                    kind=res.kind,
                    namespaced=bool(res.namespaced),
                )
            )
        return resource_types

    def list_resources(
        self, resource_type: ResourceType, namespace: Optional[str] = None
    ) -> list[dict[str, Any]]:
        resource = self._resource(resource_type.gvk)
        if resource_type.namespaced and namespace:
            result = resource.get(namespace=namespace)
        else:
            result = resource.get()
        items = result.to_dict().get("items") or []
        for item in items:
            # list responses omit the type of each item
            item.setdefault("kind", resource_type.kind)
            item.setdefault("apiVersion", resource_type.api_version)
        return items

    def is_namespaced(self, gvk: GroupVersionKind) -> bool:
        return bool(self._resource(gvk).namespaced)

    def get(self, resource: ResourceDocument) -> dict[str, Any]:
        result = self._resource(resource.gvk).get(
            name=resource.name, namespace=resource.namespace or None
        )
        return result.to_dict()

    def create(self, resource: ResourceDocument) -> dict[str, Any]:
        result = self._resource(resource.gvk).create(
            body=resource.to_dict(), namespace=resource.namespace or None
        )
        return result.to_dict()

    def update(self, resource: ResourceDocument) -> dict[str, Any]:
        result = self._resource(resource.gvk).replace(
            body=resource.to_dict(), namespace=resource.namespace or None
        )
        return result.to_dict()

    def delete(self, resource: ResourceDocument) -> None:
        self._resource(resource.gvk).delete(
            name=resource.name, namespace=resource.namespace or None
        )

    def refresh_mappings(self) -> None:
        logger.info("Refreshing REST mappings")
        self._dynamic.resources.invalidate_cache()

    def close(self) -> None:
        self.connection.close()
