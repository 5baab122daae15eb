"""Readiness checks run after a resource is written."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from .cluster import ClusterClient, ResourceType
from .config import InstallerSettings
from .errors import InstallerError, ReadinessTimeoutError
from .models import ResourceDocument
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


class ResourceNotReadyError(InstallerError):
    """Raised by a poll that observed a resource which is not ready yet."""

    pass


class ReadinessChecker(ABC):
    """Decides whether a written resource has become usable."""

    def __init__(self, policy: RetryPolicy):
        """
        Initialize readiness checker.

        Args:
            policy: Poll interval and attempt budget
        """
        self.policy = policy

    @abstractmethod
    def is_ready(self, cluster: ClusterClient, resource: ResourceDocument) -> bool:
        """
        Poll the cluster once.

        Errors raised here count as "not ready yet".
        """

    def on_ready(self, cluster: ClusterClient, resource: ResourceDocument) -> None:
        """Called once after the resource became ready."""
        pass


def crd_served_version(spec: dict[str, Any]) -> str:
    """Version of a CRD to query: the storage version, else the first served one."""
    versions = spec.get("versions") or []
    for version in versions:
        if version.get("storage"):
            return version["name"]
    for version in versions:
        if version.get("served", True):
            return version["name"]
    # apiextensions.k8s.io/v1beta1 single-version CRDs
    return spec.get("version", "")


def crd_versions(spec: dict[str, Any]) -> list[str]:
    """All versions declared by a CRD spec."""
    versions = [v["name"] for v in spec.get("versions") or [] if v.get("name")]
    if spec.get("version") and spec["version"] not in versions:
        versions.append(spec["version"])
    return versions


def crd_resource_type(crd: dict[str, Any]) -> ResourceType:
    """The resource type a CustomResourceDefinition registers."""
    spec = crd.get("spec") or {}
    names = spec.get("names") or {}
    return ResourceType(
        group=spec.get("group", ""),
        version=crd_served_version(spec),
        resource=names.get("plural", ""),
        kind=names.get("kind", ""),
        namespaced=spec.get("scope") == "Namespaced",
    )


class CustomResourceDefinitionReadiness(ReadinessChecker):
    """
    Waits for a CRD to be served.

    The Established condition can be reported before the API server serves
    the new type, so a list call against the type must succeed as well.
    """

    def is_ready(self, cluster: ClusterClient, resource: ResourceDocument) -> bool:
        live = cluster.get(resource)
        conditions = (live.get("status") or {}).get("conditions") or []
        established = any(
            c.get("type") == "Established" and c.get("status", "True") == "True"
            for c in conditions
        )
        if not established:
            logger.debug(f"CRD {resource.name} exists but not yet established")
            return False

        cluster.list_resources(crd_resource_type(live))
        logger.info(f"Registered CRD {resource.name}")
        return True

    def on_ready(self, cluster: ClusterClient, resource: ResourceDocument) -> None:
        # pick up the REST mapping of the new kind
        cluster.refresh_mappings()


class DeploymentReadiness(ReadinessChecker):
    """Waits for at least one ready replica."""

    def is_ready(self, cluster: ClusterClient, resource: ResourceDocument) -> bool:
        # no replicas to wait for
        if (resource.object.get("spec") or {}).get("replicas") == 0:
            return True

        live = cluster.get(resource)
        status = live.get("status") or {}
        if (status.get("readyReplicas") or 0) >= 1:
            logger.info(f"Deployment {resource.namespace}.{resource.name} ready")
            return True

        conditions = status.get("conditions") or []
        condition = conditions[0] if conditions else {}
        logger.debug(
            f"No ready replicas for deployment {resource.namespace}.{resource.name} "
            f"with condition {condition}"
        )
        return False


class ReadinessRegistry:
    """
    Readiness checkers by kind.

    Kinds without a checker are ready as soon as they are written.
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._checkers: dict[str, ReadinessChecker] = {}

    @classmethod
    def default(cls, settings: Optional[InstallerSettings] = None) -> "ReadinessRegistry":
        """
        Registry with the built-in CRD and Deployment checkers.

        Args:
            settings: Installer settings providing poll budgets
        """
        settings = settings or InstallerSettings()
        registry = cls()
        registry.register(
            "CustomResourceDefinition",
            CustomResourceDefinitionReadiness(
                RetryPolicy.fixed(settings.crd_poll_delay_seconds, settings.crd_poll_attempts)
            ),
        )
        # covers apps/v1, apps/v1beta2 and extensions/v1beta1
        registry.register(
            "Deployment",
            DeploymentReadiness(
                RetryPolicy.fixed(
                    settings.deployment_poll_delay_seconds, settings.deployment_poll_attempts
                )
            ),
        )
        return registry

    def register(self, kind: str, checker: ReadinessChecker) -> None:
        self._checkers[kind] = checker

    def get(self, kind: str) -> Optional[ReadinessChecker]:
        return self._checkers.get(kind)

    def kinds(self) -> list[str]:
        return sorted(self._checkers)

    async def wait_for_ready(self, cluster: ClusterClient, resource: ResourceDocument) -> None:
        """
        Block until a resource is ready.

        Args:
            cluster: Cluster client
            resource: Resource as written

        Raises:
            ReadinessTimeoutError: If the poll budget is exhausted
        """
        checker = self.get(resource.kind)
        if checker is None:
            return

        def poll() -> None:
            if not checker.is_ready(cluster, resource):
                raise ResourceNotReadyError(f"{resource.key} is not ready")

        try:
            await with_retry(poll, checker.policy, description=f"readiness of {resource.key}")
        except Exception as e:
            raise ReadinessTimeoutError(resource.key, checker.policy.attempts, e) from e

        await asyncio.to_thread(checker.on_ready, cluster, resource)
