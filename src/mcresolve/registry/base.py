"""Registry client abstraction.

A package registry lists the versions of a package and, when a listing
omits dependency data, returns the full detail of one version. A loader
registry lists the loader builds available for a game version. Concrete
registries are looked up by kind through a ``RegistrySet``; nothing
downstream branches on the kind.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, Optional, Sequence

from ..errors import RegistryError
from ..versioning.models import InstallerVersion, LoaderVersion, PackageId, VersionSpec


class PackageRegistry(ABC):
    """Read-only source of package versions and their metadata."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """Registry kind used in PackageId.registry."""

    @abstractmethod
    async def fetch_versions(self, package: PackageId) -> Sequence[VersionSpec]:
        """List every version of ``package``.

        Raises:
            PackageNotFound: the registry does not know the package.
            RegistryUnavailable: transport failure after retries.
            RegistryProtocolError: the response could not be interpreted.
        """

    @abstractmethod
    async def fetch_version_detail(self, package: PackageId, version: str) -> VersionSpec:
        """Return one version, by number or registry id, with dependency data."""

    async def close(self) -> None:
        """Release network resources held by the registry."""


class LoaderRegistry(ABC):
    """Read-only source of loader builds per game version."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Loader name, e.g. "fabric"."""

    @abstractmethod
    async def fetch_loader_versions(self, game_version: str) -> Sequence[LoaderVersion]:
        """Loader builds supporting ``game_version``, newest first."""

    async def fetch_installer_versions(self) -> Sequence[InstallerVersion]:
        """Installer builds, newest first; empty when the loader has none."""
        return ()

    def server_jar_url(self, game_version: str, loader_version: str, installer_version: str) -> Optional[str]:
        """Download URL of a launchable server jar, when the registry offers one."""
        return None

    async def close(self) -> None:
        """Release network resources held by the registry."""


class RegistrySet:
    """Package registries keyed by kind."""

    def __init__(self, registries: Iterable[PackageRegistry] = ()):
        self._registries: Dict[str, PackageRegistry] = {}
        for registry in registries:
            self.register(registry)

    def register(self, registry: PackageRegistry) -> None:
        self._registries[registry.kind] = registry

    def get(self, kind: str) -> PackageRegistry:
        try:
            return self._registries[kind]
        except KeyError:
            raise RegistryError(f"No registry configured for kind '{kind}'", registry=kind) from None

    def for_package(self, package: PackageId) -> PackageRegistry:
        return self.get(package.registry)

    def __contains__(self, kind: object) -> bool:
        return kind in self._registries

    def __iter__(self) -> Iterator[PackageRegistry]:
        return iter(self._registries.values())

    async def close(self) -> None:
        for registry in self._registries.values():
            await registry.close()
