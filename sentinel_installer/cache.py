"""In-memory snapshot of the resources installed in a cluster."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from .callbacks import LAST_APPLIED_ANNOTATION, decode_last_applied
from .cluster import ClusterClient
from .config import get_settings
from .discovery import ResourceFilter, get_cluster_resources
from .errors import CacheError, MissingAnnotationError
from .models import ResourceDocument, ResourceKey
from .resources import ResourceList, ResourcesByKey

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    asyncio reader/writer lock.

    Readers share the lock, writers hold it exclusively. Waiting writers
    block new readers so a steady stream of reads cannot starve a write.
    """

    def __init__(self, write_locked: bool = False):
        """
        Initialize the lock.

        Args:
            write_locked: Start with the write lock held by the creator
        """
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = write_locked
        self._waiting_writers = 0

    @property
    def write_locked(self) -> bool:
        return self._writer

    async def acquire_read(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1

    async def release_read(self) -> None:
        async with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    async def acquire_write(self) -> None:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
                self._writer = True
            finally:
                self._waiting_writers -= 1
                self._cond.notify_all()

    async def release_write(self) -> None:
        async with self._cond:
            self._writer = False
            self._cond.notify_all()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()


class ResourceCache:
    """
    Snapshot of every resource believed to be installed, keyed by resource key.

    A new cache is empty and locked: every accessor blocks until init()
    has populated it from the cluster. Listing a large cluster can take tens
    of seconds; pass filters to skip resource types the installer never
    manages.

    Documents are copied on the way in and out, so callers never share state
    with the cache.
    """

    def __init__(self):
        """Initialize an empty, locked cache."""
        self._lock = ReadWriteLock(write_locked=True)
        self._initial_lock_held = True
        self._initialized = False
        self._resources = ResourcesByKey()
        self._cluster: Optional[ClusterClient] = None
        self._filters: tuple[ResourceFilter, ...] = ()
        self._namespaces: Optional[Sequence[str]] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def init(
        self,
        cluster: ClusterClient,
        *filters: ResourceFilter,
        namespaces: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Populate the cache with a snapshot of the cluster and unlock it.

        Args:
            cluster: Cluster client
            filters: Resource type filters; see discovery.DEFAULT_FILTERS
            namespaces: Restrict namespaced types to these namespaces;
                SENTINEL_INSTALLER_CACHE_NAMESPACES by default

        Raises:
            CacheError: If the cache was already initialized
            ClusterListError: If listing the cluster fails; the cache is then
                left empty and unlocked
        """
        if self._initialized:
            raise CacheError("cache already initialized, use refresh()")
        if self._initial_lock_held:
            self._initial_lock_held = False
        else:
            await self._lock.acquire_write()
            if self._initialized:
                await self._lock.release_write()
                raise CacheError("cache already initialized, use refresh()")

        if namespaces is None:
            namespaces = get_settings().cache_namespaces or None
        self._cluster = cluster
        self._filters = filters
        self._namespaces = namespaces
        try:
            await self._refresh_unsafe()
            self._initialized = True
        finally:
            await self._lock.release_write()

    async def refresh(
        self,
        cluster: Optional[ClusterClient] = None,
        *filters: ResourceFilter,
        namespaces: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Re-list the cluster under the write lock.

        Arguments override the ones given to init(); on failure the previous
        snapshot is kept.
        """
        if not self._initialized:
            raise CacheError("cache must be initialized before refresh")
        async with self._lock.write():
            if cluster is not None:
                self._cluster = cluster
            if filters:
                self._filters = filters
            if namespaces is not None:
                self._namespaces = namespaces
            await self._refresh_unsafe()

    async def _refresh_unsafe(self) -> None:
        if self._cluster is None:
            raise CacheError("no cluster to list")
        current = await get_cluster_resources(self._cluster, self._filters, self._namespaces)

        resources = ResourceList()
        untracked = 0
        for res in current:
            installed = _installed_form(res)
            if installed is None:
                untracked += 1
                resources.append(res)
            else:
                resources.append(installed)
        self._resources = resources.by_key()
        logger.info(
            f"Cached {len(self._resources)} resources ({untracked} not written by the installer)"
        )

    async def get(self, key: ResourceKey) -> Optional[ResourceDocument]:
        async with self._lock.read():
            res = self._resources.get(key)
            return res.deep_copy() if res is not None else None

    async def set(self, resource: ResourceDocument) -> None:
        async with self._lock.write():
            self._resources[resource.key] = resource.deep_copy()

    async def delete(self, resource: ResourceDocument) -> None:
        async with self._lock.write():
            self._resources.pop(resource.key, None)

    async def size(self) -> int:
        async with self._lock.read():
            return len(self._resources)

    async def list(self) -> ResourceList:
        """All cached resources, sorted in install order."""
        async with self._lock.read():
            return ResourceList(res.deep_copy() for res in self._resources.list())


def _installed_form(resource: ResourceDocument) -> Optional[ResourceDocument]:
    """
    Decode the last-applied form of a live resource.

    Returns None for resources the installer did not write, or whose
    annotation cannot be decoded.
    """
    if LAST_APPLIED_ANNOTATION not in resource.annotations:
        return None
    try:
        installed = decode_last_applied(resource)
    except MissingAnnotationError as e:
        logger.warning(f"Caching {resource.key} in live form: {e}")
        return None
    if installed.key != resource.key:
        logger.warning(
            f"Caching {resource.key} in live form: last-applied annotation describes {installed.key}"
        )
        return None
    return installed
