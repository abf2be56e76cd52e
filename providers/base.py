"""Abstract resource provider interface and factory.

Components never talk to a cloud SDK directly. They describe resources as
:class:`ResourceSpec` values and hand them to a :class:`ResourceProvider`,
which creates them and surfaces their output attributes back. The same
interface fronts the secrets store (:meth:`ResourceProvider.generate_secret`).

The concrete implementation is selected at runtime via the
``RESOURCE_PROVIDER`` setting, which must be the fully-qualified Python class
name of a :class:`ResourceProvider` subclass (e.g.
``providers.pulumi_aws.PulumiProvider``).
"""

import importlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any

from common.config import get_settings

logger = logging.getLogger(__name__)

# Characters a generated password never contains: quoting, shell expansion,
# URL/DSN separators and whitespace.
UNSAFE_PASSWORD_CHARACTERS = "\"'`$\\/@ \t\n"


@dataclass(frozen=True)
class ResourceHandle:
    """Reference to a live (or looked-up) resource.

    ``ref`` is the provider's own object (a Pulumi resource, an invoke result,
    an in-memory record) and is opaque to everything outside the provider.
    """

    name: str
    resource_type: str
    component: str | None = None
    ref: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Json:
    """Property value serialised to a JSON string once its inputs resolve."""

    value: Any


@dataclass(frozen=True)
class Format:
    """Property value built with ``str.format`` once its arguments resolve.

    ``Format("{}:latest", repository_url)``
    """

    template: str
    args: tuple[Any, ...]

    def __init__(self, template: str, *args: Any):
        object.__setattr__(self, "template", template)
        object.__setattr__(self, "args", args)


@dataclass(frozen=True)
class SecretField:
    """Property value taken from one field of a generated secret.

    Only the provider ever sees the plaintext; components pass this marker.
    """

    secret: ResourceHandle
    key: str


@dataclass(frozen=True)
class ResourceSpec:
    """Declarative description of one resource.

    Attributes:
        name: Logical name, unique within the stack.
        resource_type: ``module.Class`` token, e.g. ``"ec2.Vpc"``.
        props: Constructor arguments; values may be outputs read from other
            handles, :class:`Json` or :class:`SecretField` markers.
        component: Kind of the component that owns the resource.
        tags: Tags, applied only where the resource type supports them.
        depends_on: Explicit ordering on top of data dependencies.
        ignore_changes: Properties whose later drift is ignored.
        retain_on_delete: Keep the resource alive when it leaves the stack.
    """

    name: str
    resource_type: str
    props: dict[str, Any] = field(default_factory=dict)
    component: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
    depends_on: tuple[ResourceHandle, ...] = ()
    ignore_changes: tuple[str, ...] = ()
    retain_on_delete: bool = False


class SecretKind(str, Enum):
    """What the secrets store generates."""

    PASSWORD = "password"
    SSH_KEY = "ssh-key"


@dataclass(frozen=True)
class SecretSpec:
    """Request to generate and store a credential.

    A ``PASSWORD`` secret is stored as ``{"username": ..., "password": ...}``.
    An ``SSH_KEY`` secret stores the private key; its handle exposes the
    ``public_key`` output.
    """

    name: str
    secret_name: str
    kind: SecretKind = SecretKind.PASSWORD
    username: str | None = None
    length: int = 16
    exclude_characters: str = UNSAFE_PASSWORD_CHARACTERS
    description: str = ""
    component: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


def walk_attribute(value: Any, path: list[str]) -> Any:
    """Follow a dotted attribute path through objects, mappings and lists.

    Raises:
        KeyError: If a segment cannot be resolved.
    """
    for segment in path:
        if isinstance(value, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(value):
                raise KeyError(segment)
            value = value[index]
        elif isinstance(value, Mapping):
            value = value[segment]
        elif hasattr(value, segment):
            value = getattr(value, segment)
        else:
            raise KeyError(segment)
    return value


class ResourceProvider(ABC):
    """Capability interface over the cloud resource provider and secrets store.

    Implementations must be usable for a whole orchestration pass: handles
    returned by one call are accepted by every other call.
    """

    @abstractmethod
    def create_resource(self, spec: ResourceSpec) -> ResourceHandle:
        """Create the resource, or update it in place if the name exists.

        Raises:
            ProviderError: If the provider rejects the resource.
        """
        ...

    @abstractmethod
    def read_output(self, handle: ResourceHandle, attribute: str) -> Any:
        """Read an output attribute of a resource.

        Args:
            handle: Handle returned by create/lookup/generate.
            attribute: Attribute name; dotted paths and list indices are
                allowed (``"domain_validation_options.0.resource_record_name"``).

        Raises:
            ProviderError: If the attribute does not exist.
        """
        ...

    @abstractmethod
    def destroy_resource(self, handle: ResourceHandle) -> None:
        """Remove the resource from the stack.

        Resources created with ``retain_on_delete`` leave the stack but are not
        deleted.
        """
        ...

    @abstractmethod
    def generate_secret(self, spec: SecretSpec) -> ResourceHandle:
        """Generate a credential and store it; return a reference to it."""
        ...

    @abstractmethod
    def lookup_resource(self, resource_type: str, **filters: Any) -> ResourceHandle:
        """Find a resource that must already exist.

        Raises:
            ResourceNotFoundError: If nothing matches.
        """
        ...

    def open_component(self, kind: str, name: str) -> None:
        """Called before a component creates its first resource."""

    def close_component(self, name: str, outputs: Mapping[str, Any]) -> None:
        """Called once a component has produced its output."""


def load_provider_class(class_path: str) -> type[ResourceProvider]:
    """Dynamically import a ResourceProvider subclass by its fully-qualified name.

    Args:
        class_path: e.g. ``"providers.memory.InMemoryProvider"``

    Returns:
        The provider **class** (not an instance).

    Raises:
        ValueError: If the path is malformed, the module cannot be imported,
            the attribute doesn't exist, or it isn't a ResourceProvider subclass.
    """
    if "." not in class_path:
        raise ValueError(
            f"RESOURCE_PROVIDER must be a fully-qualified class name "
            f"(e.g. 'providers.pulumi_aws.PulumiProvider'), got: '{class_path}'"
        )

    module_path, class_name = class_path.rsplit(".", 1)

    try:
        module = importlib.import_module(module_path)
    except ModuleNotFoundError as exc:
        raise ValueError(
            f"Cannot import module '{module_path}' from RESOURCE_PROVIDER='{class_path}': {exc}"
        ) from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise ValueError(
            f"Module '{module_path}' has no attribute '{class_name}' (RESOURCE_PROVIDER='{class_path}')"
        )

    if not (isinstance(cls, type) and issubclass(cls, ResourceProvider)):
        raise ValueError(
            f"'{class_path}' is not a ResourceProvider subclass (got {type(cls).__name__})"
        )

    return cls


@lru_cache
def get_provider() -> ResourceProvider:
    """Get the configured resource provider instance.

    The class is instantiated with no arguments; each provider reads whatever
    it needs (region, ...) from settings in its own ``__init__``.
    """
    class_path = get_settings().resource_provider
    cls = load_provider_class(class_path)
    logger.info("Loading resource provider: %s", class_path)
    return cls()
