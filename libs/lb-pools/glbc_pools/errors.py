"""Error types raised by the pools and cloud interfaces."""

from typing import Optional


class GLBCError(Exception):
    """Base class for all load balancer controller errors."""


class ConfigurationError(GLBCError):
    """Invalid startup configuration. Fatal, the controller must not start."""


class CloudError(GLBCError):
    """A cloud API call failed."""

    def __init__(self, message: str, kind: Optional[str] = None, name: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.name = name


class NotFoundError(CloudError):
    """The requested resource does not exist."""


class ConflictError(CloudError):
    """The call conflicts with the current state of other resources."""


class AlreadyExistsError(ConflictError):
    """A resource with the same name already exists."""


class ResourceInUseError(ConflictError):
    """The resource is still referenced by a dependent resource."""


class MissingDependencyError(ConflictError):
    """The resource references another resource that does not exist."""


class TransientCloudError(CloudError):
    """Network or server side failure. Retried by the next resync."""


class AggregateError(GLBCError):
    """
    Collects the per-resource failures of a Sync, GC or Shutdown pass.

    Resources that succeeded before or after a failure are left in place.
    """

    def __init__(self, operation: str, errors: list[Exception]):
        self.operation = operation
        self.errors = list(errors)
        summary = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{operation} failed for {len(self.errors)} resource(s): {summary}")

    @property
    def first(self) -> Optional[Exception]:
        """First error encountered, if any."""
        return self.errors[0] if self.errors else None


def raise_if_errors(operation: str, errors: list[Exception]) -> None:
    """Raise an AggregateError when ``errors`` is not empty."""
    if errors:
        raise AggregateError(operation, errors)
