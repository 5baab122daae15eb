"""Lifecycle callbacks invoked around installs and resource writes."""

import logging
from enum import Enum
from typing import Iterable, Optional

from .errors import CallbackError, InvalidResourceError, MissingAnnotationError
from .models import ResourceDocument

logger = logging.getLogger(__name__)

LAST_APPLIED_ANNOTATION = "installer.sentinel.io/last-applied-configuration"


class HookPhase(str, Enum):
    """Installer lifecycle phase."""

    PRE_INSTALL = "pre_install"
    POST_INSTALL = "post_install"
    PRE_CREATE = "pre_create"
    POST_CREATE = "post_create"
    PRE_UPDATE = "pre_update"
    POST_UPDATE = "post_update"
    PRE_DELETE = "pre_delete"
    POST_DELETE = "post_delete"


RESOURCE_PHASES = frozenset(
    {
        HookPhase.PRE_CREATE,
        HookPhase.POST_CREATE,
        HookPhase.PRE_UPDATE,
        HookPhase.POST_UPDATE,
        HookPhase.PRE_DELETE,
        HookPhase.POST_DELETE,
    }
)


class InstallerCallbacks:
    """
    Base class for installer callbacks.

    Override the phases of interest; every hook defaults to a no-op. Resource
    hooks may mutate the document before it is written.
    """

    def pre_install(self) -> None:
        pass

    def post_install(self) -> None:
        pass

    def pre_create(self, resource: ResourceDocument) -> None:
        pass

    def post_create(self, resource: ResourceDocument) -> None:
        pass

    def pre_update(self, resource: ResourceDocument) -> None:
        pass

    def post_update(self, resource: ResourceDocument) -> None:
        pass

    def pre_delete(self, resource: ResourceDocument) -> None:
        pass

    def post_delete(self, resource: ResourceDocument) -> None:
        pass


def last_applied_payload(resource: ResourceDocument) -> str:
    """Canonical JSON of a resource, excluding its own last-applied annotation."""
    payload = resource.deep_copy()
    annotations = payload.annotations
    annotations.pop(LAST_APPLIED_ANNOTATION, None)
    payload.annotations = annotations
    return payload.to_json()


def set_last_applied(resource: ResourceDocument) -> None:
    """Stamp the last-applied annotation on a resource."""
    annotations = resource.annotations
    annotations[LAST_APPLIED_ANNOTATION] = last_applied_payload(resource)
    resource.annotations = annotations


def decode_last_applied(resource: ResourceDocument) -> ResourceDocument:
    """
    Recover the document the installer last wrote for a resource.

    Args:
        resource: Resource as cached or read from the cluster

    Returns:
        The decoded document, carrying the same annotation

    Raises:
        MissingAnnotationError: If the annotation is absent or cannot be decoded
    """
    raw = resource.annotations.get(LAST_APPLIED_ANNOTATION)
    if raw is None:
        raise MissingAnnotationError(
            f"resource {resource.key} missing installer annotation {LAST_APPLIED_ANNOTATION}"
        )
    try:
        installed = ResourceDocument.from_json(raw)
    except InvalidResourceError as e:
        raise MissingAnnotationError(
            f"resource {resource.key} has a corrupt {LAST_APPLIED_ANNOTATION} annotation: {e}"
        ) from e
    annotations = installed.annotations
    annotations[LAST_APPLIED_ANNOTATION] = raw
    installed.annotations = annotations
    return installed


class LastAppliedAnnotation(InstallerCallbacks):
    """Records the written payload so later diffs compare against intent."""

    def pre_create(self, resource: ResourceDocument) -> None:
        set_last_applied(resource)

    def pre_update(self, resource: ResourceDocument) -> None:
        set_last_applied(resource)


class CallbackChain:
    """
    Ordered callbacks run for each lifecycle phase.

    The chain always starts with LastAppliedAnnotation; later diffing depends
    on it.
    """

    def __init__(self, callbacks: Optional[Iterable[InstallerCallbacks]] = None):
        """
        Initialize callback chain.

        Args:
            callbacks: User callbacks, run after the built-in ones
        """
        self.callbacks: list[InstallerCallbacks] = [LastAppliedAnnotation()]
        self.callbacks.extend(cb for cb in (callbacks or []) if cb is not None)

    def register(self, callback: InstallerCallbacks) -> None:
        self.callbacks.append(callback)

    def run(self, phase: HookPhase, resource: Optional[ResourceDocument] = None) -> None:
        """
        Invoke a phase on every callback in registration order.

        Raises:
            CallbackError: On the first failing callback
        """
        phase = HookPhase(phase)
        key = resource.key if resource is not None else None
        logger.debug(f"Running {phase.value} hooks ({len(self.callbacks)}) for {key or 'install'}")
        for callback in self.callbacks:
            hook = getattr(callback, phase.value)
            try:
                if phase in RESOURCE_PHASES:
                    hook(resource)
                else:
                    hook()
            except Exception as e:
                raise CallbackError(phase.value, key, e) from e
