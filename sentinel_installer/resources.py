"""Collections of resource documents."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from .models import GroupVersionKind, ResourceDocument, ResourceKey
from .ordering import group_sort_key, resource_sort_key

logger = logging.getLogger(__name__)


class ResourceList(list[ResourceDocument]):
    """
    An ordered list of resource documents.

    Every operation returns a new collection; the documents themselves are
    shared, so callers deep-copy before mutating.
    """

    def filter(self, predicate: Callable[[ResourceDocument], bool]) -> "ResourceList":
        """
        Select resources.

        Args:
            predicate: Returns True for resources to keep

        Returns:
            ResourceList of matching resources, in the original order
        """
        return ResourceList(res for res in self if predicate(res))

    def with_labels(self, selector: Mapping[str, str]) -> "ResourceList":
        """
        Select resources carrying every label in the selector.

        An empty selector matches every resource.
        """
        wanted = dict(selector)

        def matches(res: ResourceDocument) -> bool:
            labels = res.labels
            return all(labels.get(k) == v for k, v in wanted.items())

        return self.filter(matches)

    def sorted(self) -> "ResourceList":
        """Return a copy sorted in install order."""
        return ResourceList(sorted(self, key=resource_sort_key))

    def by_key(self) -> "ResourcesByKey":
        """
        Index resources by key.

        When two resources share a key the later one wins; the collision is
        logged.
        """
        mapped = ResourcesByKey()
        for res in self:
            key = res.key
            if key in mapped:
                logger.warning(f"Duplicate resource {key}: keeping the last occurrence")
            mapped[key] = res
        return mapped

    def grouped_by_gvk(self) -> list["VersionedGroup"]:
        """
        Group resources by GroupVersionKind.

        Groups are ordered by install order of their kind (unlisted kinds
        last, lexically), and resources inside a group by namespace + name.
        """
        groups: dict[GroupVersionKind, ResourceList] = {}
        for res in self:
            groups.setdefault(res.gvk, ResourceList()).append(res)
        return [
            VersionedGroup(gvk=gvk, resources=groups[gvk].sorted())
            for gvk in sorted(groups, key=group_sort_key)
        ]


class ResourcesByKey(dict[ResourceKey, ResourceDocument]):
    """Resources indexed by key."""

    def list(self) -> ResourceList:
        return ResourceList(self.values()).sorted()


@dataclass
class VersionedGroup:
    """Resources sharing one GroupVersionKind."""

    gvk: GroupVersionKind
    resources: ResourceList = field(default_factory=ResourceList)


def as_resource_list(resources: Iterable[ResourceDocument | dict] | None) -> ResourceList:
    """Build a ResourceList from documents or raw resource objects."""
    if resources is None:
        return ResourceList()
    return ResourceList(
        res if isinstance(res, ResourceDocument) else ResourceDocument(res) for res in resources
    )
