"""Exceptions raised by the Sentinel kube installer."""

from typing import Any, Optional


class InstallerError(Exception):
    """Base class for installer errors."""

    pass


class InvalidResourceError(InstallerError):
    """Raised when a resource document is malformed."""

    pass


class MissingAnnotationError(InstallerError):
    """Raised when a managed resource lacks a decodable last-applied annotation."""

    pass


class KindNotFoundError(InstallerError):
    """Raised when the API server has no REST mapping for a kind."""

    pass


class ScopeResolutionError(InstallerError):
    """Raised when a resource cannot be classified as namespaced or cluster scoped."""

    pass


class PatchError(InstallerError):
    """Raised when a patch cannot be computed or applied."""

    pass


class CacheError(InstallerError):
    """Raised on misuse of the resource cache."""

    pass


class ClusterListError(InstallerError):
    """Raised when listing one resource type from the cluster fails."""

    def __init__(self, resource_type: Any, message: str):
        self.resource_type = resource_type
        super().__init__(f"listing {resource_type}: {message}")


class ReadinessTimeoutError(InstallerError):
    """Raised when a resource does not become ready within its poll budget."""

    def __init__(self, key: Any, attempts: int, last_error: Optional[BaseException] = None):
        self.key = key
        self.attempts = attempts
        self.last_error = last_error
        message = f"{key} not ready after {attempts} attempts"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class ResourceOperationError(InstallerError):
    """Raised when creating, updating or deleting a single resource fails."""

    def __init__(self, phase: str, key: Any, cause: BaseException):
        self.phase = phase
        self.key = key
        self.cause = cause
        super().__init__(f"{phase} {key}: {cause}")


class CallbackError(InstallerError):
    """Raised when a lifecycle callback fails."""

    def __init__(self, phase: str, key: Any, cause: BaseException):
        self.phase = phase
        self.key = key
        self.cause = cause
        target = f" for {key}" if key is not None else ""
        super().__init__(f"error in {phase} hook{target}: {cause}")


class GroupOperationError(InstallerError):
    """
    Raised when one or more resources of a kind group fail.

    The message describes the first failure; every failure is kept in
    ``errors`` in resource order.
    """

    def __init__(self, phase: str, gvk: Any, errors: list[BaseException]):
        self.phase = phase
        self.gvk = gvk
        self.errors = errors
        extra = f" (and {len(errors) - 1} more)" if len(errors) > 1 else ""
        super().__init__(f"{phase} {gvk} failed: {errors[0]}{extra}")
