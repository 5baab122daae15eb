"""Structural diffing and patching of resource documents."""

import copy
import json
import logging
from typing import Any

import json_merge_patch

from .errors import InvalidResourceError, PatchError
from .models import ResourceDocument

logger = logging.getLogger(__name__)

# metadata fields written by the API server
GENERATED_METADATA_FIELDS = (
    "uid",
    "resourceVersion",
    "generation",
    "selfLink",
    "creationTimestamp",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
    "initializers",
    "finalizers",
    "ownerReferences",
    "clusterName",
    "managedFields",
)


def zero_generated_values(obj: dict[str, Any]) -> dict[str, Any]:
    """
    Strip server-generated fields from a resource object in place.

    Args:
        obj: Resource object

    Returns:
        The same object, for chaining
    """
    metadata = obj.get("metadata")
    if isinstance(metadata, dict):
        for field in GENERATED_METADATA_FIELDS:
            metadata.pop(field, None)
    obj.pop("status", None)
    return obj


def _comparable(resource: ResourceDocument) -> dict[str, Any]:
    return zero_generated_values(copy.deepcopy(resource.object))


def create_patch(original: ResourceDocument, desired: ResourceDocument) -> dict[str, Any]:
    """JSON merge patch turning ``original`` into ``desired``, ignoring generated fields."""
    return json_merge_patch.create_patch(_comparable(original), _comparable(desired))


def get_patch(original: ResourceDocument, desired: ResourceDocument) -> bytes:
    """
    Compute the structural merge patch between two resources.

    Both documents are compared on copies with server-generated values
    zeroed; neither input is modified.

    Args:
        original: Last-applied (cached) resource
        desired: Desired resource

    Returns:
        JSON encoded merge patch; ``b"{}"`` when the resources match
    """
    patch = create_patch(original, desired)
    return json.dumps(patch, sort_keys=True, separators=(",", ":")).encode()


def match(original: ResourceDocument, desired: ResourceDocument) -> bool:
    """Return True if the resources are equal once generated values are ignored."""
    patch = create_patch(original, desired)
    if not patch:
        return True
    logger.info(
        f"Objects differ: original={original.key} desired={desired.key} "
        f"diff={json.dumps(patch, sort_keys=True)}"
    )
    return False


def apply_patch(resource: ResourceDocument, patch: bytes | str | dict[str, Any]) -> None:
    """
    Apply a merge patch to a resource in place.

    Args:
        resource: Resource to patch (typically a fresh copy from the server)
        patch: Merge patch as produced by get_patch

    Raises:
        PatchError: If the patch is not a JSON object or the patched result is
            not a single resource document
    """
    if isinstance(patch, (bytes, str)):
        try:
            patch = json.loads(patch)
        except ValueError as e:
            raise PatchError(f"decoding patch: {e}") from e
    if not isinstance(patch, dict):
        raise PatchError(f"merge patch must be an object, got {type(patch).__name__}")

    patched = json_merge_patch.merge(copy.deepcopy(resource.object), patch)
    try:
        result = ResourceDocument(patched)
    except InvalidResourceError as e:
        raise PatchError(f"patched {resource.key} is not a valid resource: {e}") from e
    resource.object = result.object
