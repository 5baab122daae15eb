"""Resource models for the Sentinel kube installer."""

import copy
import json
from dataclasses import dataclass
from typing import Any, Optional

from kubernetes.client import ApiClient
from pydantic import BaseModel, Field

from .errors import InvalidResourceError

# top-level fields that are not part of a document's body
_ENVELOPE_FIELDS = ("apiVersion", "kind", "metadata")


@dataclass(frozen=True)
class GroupVersionKind:
    """Type identifier of a Kubernetes-style API resource."""

    group: str
    version: str
    kind: str

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> "GroupVersionKind":
        """
        Build a GVK from an ``apiVersion`` string and a kind.

        Args:
            api_version: ``group/version`` or ``version`` for the core group
            kind: Resource kind

        Returns:
            GroupVersionKind
        """
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind)

    @property
    def api_version(self) -> str:
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


@dataclass(frozen=True)
class ResourceKey:
    """Identity of a resource: two documents are the same resource iff keys are equal."""

    gvk: GroupVersionKind
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.gvk}.{self.namespace}.{self.name}"


class ResourceDocument:
    """
    A schema-less Kubernetes resource.

    Wraps the decoded JSON object of one resource. Fields the installer does
    not know about are carried untouched, so documents round-trip through
    the cache, the last-applied annotation and the API server.
    """

    __slots__ = ("object",)

    def __init__(self, obj: dict[str, Any]):
        """
        Initialize a resource document.

        Args:
            obj: Decoded resource object (not copied)

        Raises:
            InvalidResourceError: If the object is not a single named resource
        """
        _validate(obj)
        self.object = obj

    @classmethod
    def from_json(cls, text: str | bytes) -> "ResourceDocument":
        try:
            obj = json.loads(text)
        except ValueError as e:
            raise InvalidResourceError(f"decoding resource json: {e}") from e
        return cls(obj)

    @classmethod
    def from_kube_object(cls, obj: Any) -> "ResourceDocument":
        """
        Convert a typed kubernetes client model (e.g. ``V1ConfigMap``).

        Args:
            obj: Typed model instance or plain dict

        Returns:
            ResourceDocument holding the serialized form
        """
        return cls(ApiClient().sanitize_for_serialization(obj))

    @property
    def api_version(self) -> str:
        return self.object["apiVersion"]

    @property
    def kind(self) -> str:
        return self.object["kind"]

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind.from_api_version(self.api_version, self.kind)

    @property
    def metadata(self) -> dict[str, Any]:
        return self.object.setdefault("metadata", {})

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace") or ""

    @namespace.setter
    def namespace(self, value: Optional[str]) -> None:
        if value:
            self.metadata["namespace"] = value
        else:
            self.metadata.pop("namespace", None)

    @property
    def labels(self) -> dict[str, str]:
        return dict(self.metadata.get("labels") or {})

    @labels.setter
    def labels(self, value: Optional[dict[str, str]]) -> None:
        if value:
            self.metadata["labels"] = dict(value)
        else:
            self.metadata.pop("labels", None)

    @property
    def annotations(self) -> dict[str, str]:
        return dict(self.metadata.get("annotations") or {})

    @annotations.setter
    def annotations(self, value: Optional[dict[str, str]]) -> None:
        if value:
            self.metadata["annotations"] = dict(value)
        else:
            self.metadata.pop("annotations", None)

    @property
    def body(self) -> dict[str, Any]:
        """Top-level fields other than apiVersion, kind and metadata."""
        return {k: v for k, v in self.object.items() if k not in _ENVELOPE_FIELDS}

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(gvk=self.gvk, namespace=self.namespace, name=self.name)

    def deep_copy(self) -> "ResourceDocument":
        return ResourceDocument(copy.deepcopy(self.object))

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.object)

    def to_json(self) -> str:
        # sorted and compact so equal documents always serialize identically
        return json.dumps(self.object, sort_keys=True, separators=(",", ":"))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceDocument):
            return NotImplemented
        return self.object == other.object

    def __repr__(self) -> str:
        return f"ResourceDocument({self.kind} {self.namespace}/{self.name})"


def _validate(obj: Any) -> None:
    if not isinstance(obj, dict):
        raise InvalidResourceError(f"resource must be an object, got {type(obj).__name__}")
    kind = obj.get("kind")
    api_version = obj.get("apiVersion")
    if not isinstance(kind, str) or not kind:
        raise InvalidResourceError("resource is missing kind")
    if not isinstance(api_version, str) or not api_version:
        raise InvalidResourceError(f"{kind} is missing apiVersion")
    if kind == "List":
        raise InvalidResourceError(f"lists currently unsupported: {kind}")
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        raise InvalidResourceError(f"{kind} is missing metadata")
    name = metadata.get("name")
    if not isinstance(name, str) or not name:
        raise InvalidResourceError(f"{kind} is missing metadata.name")
    namespace = metadata.get("namespace")
    if namespace is not None and not isinstance(namespace, str):
        raise InvalidResourceError(f"{kind} {name} has a non-string metadata.namespace")
    for field in ("labels", "annotations"):
        values = metadata.get(field)
        if values is None:
            continue
        if not isinstance(values, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in values.items()
        ):
            raise InvalidResourceError(f"{kind} {name} metadata.{field} must map strings to strings")


class ClusterConfig(BaseModel):
    """Cluster connection configuration."""

    kubeconfig_path: Optional[str] = None
    kubeconfig_data: Optional[str] = None  # Base64 encoded kubeconfig
    context: Optional[str] = None  # Specific context to use


class ReconcileSummary(BaseModel):
    """Outcome of one reconciliation run."""

    install_namespace: str = ""
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)

    @property
    def writes(self) -> int:
        """Number of cluster writes performed."""
        return len(self.created) + len(self.updated) + len(self.deleted)
