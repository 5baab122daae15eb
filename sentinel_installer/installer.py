"""Reconciles desired resources against the resources installed in a cluster."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from .cache import ResourceCache
from .callbacks import CallbackChain, HookPhase, InstallerCallbacks, decode_last_applied
from .cluster import ClusterClient, is_already_exists, is_conflict, is_not_found, is_transient
from .config import InstallerSettings, get_settings
from .errors import (
    GroupOperationError,
    InvalidResourceError,
    KindNotFoundError,
    ResourceOperationError,
    ScopeResolutionError,
)
from .models import GroupVersionKind, ReconcileSummary, ResourceDocument
from .patch import apply_patch, get_patch, match
from .readiness import ReadinessRegistry, crd_versions
from .resources import ResourceList, VersionedGroup, as_resource_list
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

CRD_GROUP = "apiextensions.k8s.io"


class Installer(ABC):
    """Install, purge and list operations offered to installer clients."""

    @abstractmethod
    async def reconcile_resources(
        self,
        install_namespace: str,
        resources: Iterable[ResourceDocument | dict[str, Any]],
        owner_labels: Mapping[str, str],
    ) -> ReconcileSummary:
        """Converge the resources owned by ``owner_labels`` toward ``resources``."""

    @abstractmethod
    async def purge_resources(self, owner_labels: Mapping[str, str]) -> ReconcileSummary:
        """Delete every resource owned by ``owner_labels``."""

    @abstractmethod
    async def list_all_resources(self) -> ResourceList:
        """All resources known to be installed."""

    async def list_all_cached_values(self, label_key: str) -> list[str]:
        """
        Distinct values of one label across installed resources.

        Args:
            label_key: Label to collect

        Returns:
            Non-empty values in first-seen order
        """
        values: list[str] = []
        for res in await self.list_all_resources():
            value = res.labels.get(label_key, "")
            if value and value not in values:
                values.append(value)
        return values


class KubeInstaller(Installer):
    """
    Installer writing to a cluster and tracking its writes in a ResourceCache.

    The cache must be initialized by the caller; one cache is shared by every
    installer in a process.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        cache: ResourceCache,
        *callbacks: InstallerCallbacks,
        settings: Optional[InstallerSettings] = None,
        readiness: Optional[ReadinessRegistry] = None,
    ):
        """
        Initialize installer.

        Args:
            cluster: Cluster client
            cache: Initialized resource cache
            callbacks: Lifecycle callbacks, run after the built-in ones
            settings: Installer settings; the process-wide settings by default
            readiness: Readiness checkers; the built-in ones by default
        """
        self.cluster = cluster
        self.cache = cache
        self.settings = settings or get_settings()
        self.callbacks = CallbackChain(callbacks)
        self.readiness = readiness or ReadinessRegistry.default(self.settings)
        self.write_policy = self.settings.write_retry_policy()
        # a fetched copy can go stale between get and update
        self.update_policy = RetryPolicy(
            attempts=self.write_policy.attempts,
            delay=self.write_policy.delay,
            max_delay=self.write_policy.max_delay,
            retryable=lambda e: is_conflict(e) or is_transient(e),
        )

    async def reconcile_resources(
        self,
        install_namespace: str,
        resources: Iterable[ResourceDocument | dict[str, Any]],
        owner_labels: Mapping[str, str],
    ) -> ReconcileSummary:
        """
        Create, update and delete resources so the cluster matches ``resources``.

        Resources carrying ``owner_labels`` but absent from ``resources`` are
        deleted. Resources already written stay written when the run fails;
        run again to converge.

        Args:
            install_namespace: Namespace for namespaced resources
            resources: Desired resources; never modified
            owner_labels: Labels marking the resources owned by this install

        Returns:
            Summary of the writes performed

        Raises:
            InstallerError: On the first failing phase
        """
        _check_owner_labels(owner_labels)
        self.callbacks.run(HookPhase.PRE_INSTALL)
        summary = await self._reconcile(install_namespace, resources, owner_labels)
        self.callbacks.run(HookPhase.POST_INSTALL)
        return summary

    async def purge_resources(self, owner_labels: Mapping[str, str]) -> ReconcileSummary:
        _check_owner_labels(owner_labels)
        return await self._reconcile("", [], owner_labels)

    async def list_all_resources(self) -> ResourceList:
        return await self.cache.list()

    async def _reconcile(
        self,
        install_namespace: str,
        resources: Iterable[ResourceDocument | dict[str, Any]],
        owner_labels: Mapping[str, str],
    ) -> ReconcileSummary:
        cached = ResourceList(
            decode_last_applied(res) for res in (await self.cache.list()).with_labels(owner_labels)
        )
        cached_by_key = cached.by_key()
        desired = ResourceList(res.deep_copy() for res in as_resource_list(resources))

        logger.info(
            f"Reconciling {len(desired)} desired resources against {len(cached_by_key)} "
            f"cached resources with labels {dict(owner_labels)} "
            f"(cache total {await self.cache.size()})"
        )

        scopes: dict[GroupVersionKind, bool] = {}
        for res in desired:
            labels = res.labels
            labels.update(owner_labels)
            res.labels = labels

            if res.gvk not in scopes:
                scopes[res.gvk] = await self._is_namespaced(res.gvk, desired)
            res.namespace = install_namespace if scopes[res.gvk] else None

        desired_by_key = desired.by_key()
        to_create = ResourceList(res for key, res in desired_by_key.items() if key not in cached_by_key)
        to_update = ResourceList(res for key, res in desired_by_key.items() if key in cached_by_key)
        to_delete = ResourceList(res for key, res in cached_by_key.items() if key not in desired_by_key)

        logger.info(
            f"Preparing to create {len(to_create)}, update {len(to_update)}, "
            f"and delete {len(to_delete)} resources"
        )
        summary = ReconcileSummary(install_namespace=install_namespace)

        # delete in reverse order of install
        for group in reversed(to_delete.grouped_by_gvk()):
            await self._run_group("delete", group, self._delete)
            summary.deleted.extend(str(res.key) for res in group.resources)

        if to_create:
            await self._ensure_namespace(install_namespace, to_create)
        for group in to_create.grouped_by_gvk():
            await self._run_group("create", group, self._create)
            summary.created.extend(str(res.key) for res in group.resources)

        for group in to_update.grouped_by_gvk():

            async def update(res: ResourceDocument) -> bool:
                return await self._update(cached_by_key[res.key], res)

            written = await self._run_group("update", group, update)
            for res, was_written in zip(group.resources, written):
                if was_written:
                    summary.updated.append(str(res.key))
                else:
                    summary.unchanged.append(str(res.key))

        logger.info(
            f"Created {len(summary.created)}, updated {len(summary.updated)} "
            f"({len(summary.unchanged)} unchanged), and deleted {len(summary.deleted)} resources"
        )
        return summary

    async def _is_namespaced(self, gvk: GroupVersionKind, desired: ResourceList) -> bool:
        try:
            return await asyncio.to_thread(self.cluster.is_namespaced, gvk)
        except KindNotFoundError as e:
            # the kind may be registered by a CRD installed in this same run
            crds = desired.filter(lambda res: _defines_kind(res, gvk))
            if len(crds) != 1:
                raise ScopeResolutionError(
                    f"could not get rest mapping and found {len(crds)} matching CRDs for {gvk}"
                ) from e
            return (crds[0].object.get("spec") or {}).get("scope") == "Namespaced"

    async def _ensure_namespace(self, install_namespace: str, to_create: ResourceList) -> None:
        if not install_namespace:
            return
        namespace = ResourceDocument(
            {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": install_namespace}}
        )
        if any(res.key == namespace.key for res in to_create):
            return
        try:
            await with_retry(
                lambda: self.cluster.create(namespace),
                self.write_policy,
                description=f"create namespace {install_namespace}",
            )
            logger.info(f"Created installation namespace {install_namespace}")
        except Exception as e:
            if not is_already_exists(e):
                raise ResourceOperationError("create installation namespace", namespace.key, e) from e

    async def _run_group(
        self,
        phase: str,
        group: VersionedGroup,
        operation: Callable[[ResourceDocument], Awaitable[Any]],
    ) -> list[Any]:
        """
        Run an operation on every resource of a group concurrently.

        Every operation runs to completion before failures are reported.

        Raises:
            GroupOperationError: If any operation failed
        """
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        async def run(res: ResourceDocument) -> Any:
            async with semaphore:
                try:
                    return await operation(res)
                except Exception as e:
                    raise ResourceOperationError(phase, res.key, e) from e

        results = await asyncio.gather(*(run(res) for res in group.resources), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        for error in errors:
            if not isinstance(error, Exception):
                raise error
        if errors:
            logger.error(
                f"Failed to {phase} {len(errors)} of {len(group.resources)} {group.gvk} resources",
                exc_info=errors[0],
            )
            raise GroupOperationError(phase, group.gvk, errors)
        return results

    async def _delete(self, res: ResourceDocument) -> None:
        self.callbacks.run(HookPhase.PRE_DELETE, res)
        logger.info(f"Deleting resource {res.key}")
        target = res.deep_copy()
        try:
            await with_retry(
                lambda: self.cluster.delete(target), self.write_policy, description=f"delete {res.key}"
            )
        except Exception as e:
            if not is_not_found(e):
                raise
            logger.info(f"Resource {res.key} already deleted")
        self.callbacks.run(HookPhase.POST_DELETE, res)
        await self.cache.delete(res)

    async def _create(self, res: ResourceDocument) -> None:
        self.callbacks.run(HookPhase.PRE_CREATE, res)
        logger.info(f"Creating resource {res.key}")
        target = res.deep_copy()
        await with_retry(
            lambda: self.cluster.create(target), self.write_policy, description=f"create {res.key}"
        )
        self.callbacks.run(HookPhase.POST_CREATE, res)
        await self.readiness.wait_for_ready(self.cluster, res)
        await self.cache.set(res)

    async def _update(self, original: ResourceDocument, desired: ResourceDocument) -> bool:
        """Returns False when the resource already matches."""
        self.callbacks.run(HookPhase.PRE_UPDATE, desired)
        if match(original, desired):
            return False

        patch = get_patch(original, desired)

        def write() -> None:
            # patch the server's current copy so fields set by others survive
            live = ResourceDocument(self.cluster.get(desired))
            apply_patch(live, patch)
            self.cluster.update(live)

        logger.info(f"Updating resource {desired.key}")
        await with_retry(write, self.update_policy, description=f"update {desired.key}")
        self.callbacks.run(HookPhase.POST_UPDATE, desired)
        await self.readiness.wait_for_ready(self.cluster, desired)
        await self.cache.set(desired)
        return True


def _check_owner_labels(owner_labels: Mapping[str, str]) -> None:
    # an empty selector would match every cached resource
    if not owner_labels:
        raise InvalidResourceError("owner labels must not be empty")


def _defines_kind(res: ResourceDocument, gvk: GroupVersionKind) -> bool:
    if res.kind != "CustomResourceDefinition" or res.gvk.group != CRD_GROUP:
        return False
    spec = res.object.get("spec") or {}
    return (
        spec.get("group", "") == gvk.group
        and (spec.get("names") or {}).get("kind") == gvk.kind
        and gvk.version in crd_versions(spec)
    )
