"""Shared building blocks for provisioning components."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

from common.config import Settings
from common.errors import DependencyResolutionError
from providers.base import ResourceHandle, ResourceProvider, ResourceSpec, SecretSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StackContext:
    """Stack-wide naming and tagging shared by every component."""

    project: str
    environment: str
    region: str
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StackContext":
        return cls(
            project=settings.project_name,
            environment=settings.environment,
            region=settings.aws_region,
            tags=settings.common_tags,
        )

    @property
    def prefix(self) -> str:
        return f"{self.project}-{self.environment}"

    def resource_name(self, *parts: str) -> str:
        return "-".join([self.prefix, *parts])

    def secret_name(self, name: str) -> str:
        return f"{self.project}/{self.environment}/{name}"

    @property
    def service_name(self) -> str:
        return self.resource_name("app")

    @property
    def log_group_name(self) -> str:
        # Shared by the application's log driver and the bastion's log helper
        return f"/ecs/{self.service_name}"


@dataclass(frozen=True)
class SecurityBoundary:
    """The security group that identifies traffic originating from a component."""

    component: str
    handle: ResourceHandle
    group_id: Any


@dataclass(frozen=True)
class ReachabilityGrant:
    """One-directional permission for ``source`` to reach ``destination`` on ``port``."""

    source: str
    destination: str
    port: int
    description: str


@dataclass(frozen=True)
class ComponentOutput:
    """Base for the immutable outputs of a provisioned component."""

    def as_dict(self) -> dict[str, Any]:
        # Shallow on purpose: values may be provider objects that must not be copied
        return {f.name: getattr(self, f.name) for f in fields(self)}


class Component(ABC):
    """A provisioning unit with its own options, outputs and failure domain.

    Subclasses set ``kind`` (key in the dependency graph), ``label`` (the
    ``Component`` tag) and ``type_token`` (grouping type for providers that
    have one), and implement :meth:`_provision`.
    """

    kind: ClassVar[str]
    label: ClassVar[str]
    type_token: ClassVar[str]

    def __init__(
        self,
        context: StackContext,
        options: Any,
        provider: ResourceProvider,
        ledger: list[ResourceHandle] | None = None,
    ):
        self.context = context
        self.options = options
        self.provider = provider
        self.name = context.resource_name(self.kind)
        self.output: ComponentOutput | None = None
        self._resources: list[ResourceHandle] = []
        self._ledger = ledger if ledger is not None else []

    @property
    def resources(self) -> tuple[ResourceHandle, ...]:
        """Handles this component created, in creation order."""
        return tuple(self._resources)

    def provision(self, inputs: Mapping[str, ComponentOutput]) -> ComponentOutput:
        """Create the component's resources and return its output.

        Args:
            inputs: Outputs of the producers this component depends on, by kind.

        Raises:
            DependencyResolutionError: If called twice.
        """
        if self.output is not None:
            raise DependencyResolutionError(
                f"{self.label} component has already been provisioned",
                component=self.kind,
                operation="provision",
            )

        self.provider.open_component(self.type_token, self.name)
        output = self._provision(inputs)
        self.provider.close_component(self.name, output.as_dict())
        self.output = output
        return output

    @abstractmethod
    def _provision(self, inputs: Mapping[str, ComponentOutput]) -> ComponentOutput: ...

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _tags(self, suffix: str) -> dict[str, str]:
        return {**self.context.tags, "Component": self.label, "Name": f"{self.name}-{suffix}"}

    def _create(
        self,
        suffix: str,
        resource_type: str,
        *,
        depends_on: tuple[ResourceHandle, ...] | list[ResourceHandle] = (),
        ignore_changes: tuple[str, ...] = (),
        retain_on_delete: bool = False,
        **props: Any,
    ) -> ResourceHandle:
        spec = ResourceSpec(
            name=f"{self.name}-{suffix}",
            resource_type=resource_type,
            props=props,
            component=self.kind,
            tags=self._tags(suffix),
            depends_on=tuple(depends_on),
            ignore_changes=ignore_changes,
            retain_on_delete=retain_on_delete,
        )
        return self._track(self.provider.create_resource(spec))

    def _generate_secret(self, suffix: str, **kwargs: Any) -> ResourceHandle:
        spec = SecretSpec(
            name=f"{self.name}-{suffix}",
            component=self.kind,
            tags=self._tags(suffix),
            **kwargs,
        )
        return self._track(self.provider.generate_secret(spec))

    def _track(self, handle: ResourceHandle) -> ResourceHandle:
        self._resources.append(handle)
        self._ledger.append(handle)
        return handle

    def _read(self, handle: ResourceHandle, attribute: str) -> Any:
        return self.provider.read_output(handle, attribute)

    def _input(self, inputs: Mapping[str, ComponentOutput], kind: str) -> Any:
        try:
            return inputs[kind]
        except KeyError as exc:
            raise DependencyResolutionError(
                f"{self.label} component needs the {kind} output, which was not provided",
                component=self.kind,
                operation="provision",
            ) from exc
