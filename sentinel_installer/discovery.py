"""Listing every managed resource in a cluster."""

import asyncio
import logging
from typing import Callable, Iterable, Optional, Sequence

from .cluster import ClusterClient, ResourceType
from .errors import ClusterListError, InstallerError
from .models import ResourceDocument
from .resources import ResourceList

logger = logging.getLogger(__name__)

# Returns True to exclude a resource type from listings.
ResourceFilter = Callable[[ResourceType], bool]

# types the installer ignores and the cache skips
IGNORED_RESOURCE_TYPES: frozenset[tuple[str, str, str]] = frozenset(
    {
        ("", "v1", "events"),
        ("", "v1", "endpoints"),
        ("", "v1", "nodes"),
        ("apiregistration.k8s.io", "v1beta1", "apiservices"),
        ("apiregistration.k8s.io", "v1", "apiservices"),
        ("events.k8s.io", "v1beta1", "events"),
    }
)


def ignore_installer_types(resource_type: ResourceType) -> bool:
    return (
        resource_type.group,
        resource_type.version,
        resource_type.resource,
    ) in IGNORED_RESOURCE_TYPES


DEFAULT_FILTERS: tuple[ResourceFilter, ...] = (ignore_installer_types,)


def filter_resource_types(
    resource_types: Iterable[ResourceType], filters: Sequence[ResourceFilter]
) -> list[ResourceType]:
    """Drop every resource type excluded by at least one filter."""
    return [rt for rt in resource_types if not any(f(rt) for f in filters)]


async def get_cluster_resources(
    cluster: ClusterClient,
    filters: Sequence[ResourceFilter] = (),
    namespaces: Optional[Sequence[str]] = None,
) -> ResourceList:
    """
    List every CRUD-capable resource in a cluster.

    Each resource type is listed by its own task, so pass filters to cut
    down the number of queries. Slow on large clusters.

    Args:
        cluster: Cluster client
        filters: Resource type filters; a type is skipped if any returns True
        namespaces: Restrict namespaced types to these namespaces

    Returns:
        ResourceList sorted in install order

    Raises:
        ClusterListError: If discovery or listing any type fails
    """
    try:
        discovered = await asyncio.to_thread(cluster.list_resource_types)
    except InstallerError:
        raise
    except Exception as e:
        raise ClusterListError("api resources", str(e)) from e

    resource_types = filter_resource_types(discovered, filters)
    logger.info(f"Listing {len(resource_types)} of {len(discovered)} resource types")

    async def list_type(resource_type: ResourceType, namespace: Optional[str]) -> list[ResourceDocument]:
        logger.debug(f"Listing all {resource_type} in namespace {namespace or '*'}")
        try:
            items = await asyncio.to_thread(cluster.list_resources, resource_type, namespace)
            return [ResourceDocument(item) for item in items]
        except Exception as e:
            raise ClusterListError(resource_type, str(e)) from e

    tasks = []
    for resource_type in resource_types:
        if namespaces and resource_type.namespaced:
            tasks.extend(list_type(resource_type, ns) for ns in namespaces)
        else:
            # cluster scoped types, or namespaced types across all namespaces
            tasks.append(list_type(resource_type, None))

    results = await asyncio.gather(*tasks, return_exceptions=True)

    all_resources = ResourceList()
    for result in results:
        if isinstance(result, BaseException):
            raise result
        all_resources.extend(result)
    return all_resources.sorted()
