"""Error taxonomy for stack provisioning.

Hierarchy:
    ProvisioningError (base)
    ├── ConfigurationError - invalid or missing user input, raised by validate
    ├── DependencyResolutionError - producer output missing/malformed, or a step
    │   invoked out of order (an orchestration bug)
    ├── ProviderError - the resource provider or secrets store failed
    └── ResourceNotFoundError - an externally-expected resource does not exist

Every error can carry the component and the operation that failed. The
orchestrator fills both in for the first failure before re-raising it.
"""


class ProvisioningError(Exception):
    """Base exception for every provisioning failure.

    Attributes:
        message: Human-readable error description.
        component: Component kind the failure belongs to, if known.
        operation: Orchestration step or component operation, if known.
    """

    def __init__(
        self,
        message: str,
        component: str | None = None,
        operation: str | None = None,
    ):
        self.message = message
        self.component = component
        self.operation = operation
        super().__init__(message)

    def annotate(self, component: str | None, operation: str | None) -> None:
        """Record where the failure happened without overwriting earlier context."""
        if self.component is None:
            self.component = component
        if self.operation is None:
            self.operation = operation

    def __str__(self) -> str:
        details = []
        if self.component:
            details.append(f"component={self.component}")
        if self.operation:
            details.append(f"operation={self.operation}")
        if details:
            return f"{self.message} [{', '.join(details)}]"
        return self.message


class ConfigurationError(ProvisioningError):
    """Raised when stack options are structurally invalid.

    Attributes:
        errors: One entry per offending field, e.g. ``"application.desired_count: ..."``.
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message, operation="validate")


class DependencyResolutionError(ProvisioningError):
    """Raised when a consumer needs an upstream output that is not available."""


class ProviderError(ProvisioningError):
    """Raised when the resource provider fails to create, read or delete.

    The provider's own message is kept verbatim; the original exception is
    chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        resource: str | None = None,
        component: str | None = None,
        operation: str | None = None,
    ):
        self.resource = resource
        super().__init__(message, component=component, operation=operation)


class ResourceNotFoundError(ProvisioningError, LookupError):
    """Raised when a pre-existing resource (hosted zone, AMI, ...) is missing."""

    def __init__(self, resource_type: str, filters: dict | None = None):
        self.resource_type = resource_type
        self.filters = filters or {}
        rendered = ", ".join(f"{k}={v!r}" for k, v in self.filters.items())
        super().__init__(f"{resource_type} not found ({rendered})")
