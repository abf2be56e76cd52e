"""Resource provider implementations.

The concrete implementation is determined by the RESOURCE_PROVIDER setting.
"""

from providers.base import (
    Format,
    Json,
    ResourceHandle,
    ResourceProvider,
    ResourceSpec,
    SecretField,
    SecretKind,
    SecretSpec,
    get_provider,
    load_provider_class,
)

__all__ = [
    "Format",
    "Json",
    "ResourceHandle",
    "ResourceProvider",
    "ResourceSpec",
    "SecretField",
    "SecretKind",
    "SecretSpec",
    "get_provider",
    "load_provider_class",
]
