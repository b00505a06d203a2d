"""Registry clients."""

from .base import LoaderRegistry, PackageRegistry, RegistrySet
from .fabric import FabricMetaRegistry
from .local import LocalIndexRegistry, LocalLoaderRegistry
from .modrinth import ModrinthRegistry

__all__ = [
    "PackageRegistry",
    "LoaderRegistry",
    "RegistrySet",
    "ModrinthRegistry",
    "FabricMetaRegistry",
    "LocalIndexRegistry",
    "LocalLoaderRegistry",
]
