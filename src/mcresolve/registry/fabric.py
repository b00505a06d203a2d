"""Fabric meta registry client: loader and installer builds."""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any, Mapping, Optional, Sequence

from ..common.http_client import HttpClient
from ..constants import Constants
from ..errors import RegistryProtocolError
from ..versioning.models import InstallerVersion, LoaderVersion
from .base import LoaderRegistry

logger = logging.getLogger(__name__)


class FabricMetaRegistry(LoaderRegistry):
    """Loader-metadata registry backed by meta.fabricmc.net."""

    def __init__(self, http: Optional[HttpClient] = None, base_url: Optional[str] = None):
        self._owns_http = http is None
        self._http = http or HttpClient()
        self._base_url = (base_url or Constants.REGISTRY_URL_FABRIC_META).rstrip("/")

    @property
    def name(self) -> str:
        return "fabric"

    async def close(self) -> None:
        if self._owns_http:
            await self._http.stop()

    async def fetch_loader_versions(self, game_version: str) -> Sequence[LoaderVersion]:
        """Loader builds for ``game_version``; empty when Fabric does not support it."""
        game = urllib.parse.quote(game_version, safe="")
        status, _, data = await self._http.get_json(
            f"{self._base_url}/versions/loader/{game}", context="fabric-meta"
        )
        # Fabric answers 400/404 for game versions it has no mappings for.
        if status in (400, 404):
            logger.info("Fabric meta lists no loader for game version %s", game_version)
            return ()
        entries = self._expect_list(status, data, "loader versions")
        loaders = []
        for entry in entries:
            loader = entry.get("loader") if isinstance(entry, Mapping) else None
            if not isinstance(loader, Mapping) or not loader.get("version"):
                raise RegistryProtocolError("Malformed loader entry from Fabric meta", registry="fabric-meta")
            build = loader.get("build")
            loaders.append(
                LoaderVersion(
                    version=str(loader["version"]),
                    stable=bool(loader.get("stable", False)),
                    build=build if isinstance(build, int) else None,
                )
            )
        return tuple(loaders)

    async def fetch_installer_versions(self) -> Sequence[InstallerVersion]:
        status, _, data = await self._http.get_json(
            f"{self._base_url}/versions/installer", context="fabric-meta"
        )
        entries = self._expect_list(status, data, "installer versions")
        return tuple(
            InstallerVersion(
                version=str(entry["version"]),
                stable=bool(entry.get("stable", False)),
                url=entry.get("url"),
            )
            for entry in entries
            if isinstance(entry, Mapping) and entry.get("version")
        )

    def server_jar_url(self, game_version: str, loader_version: str, installer_version: str) -> Optional[str]:
        parts = [urllib.parse.quote(p, safe="") for p in (game_version, loader_version, installer_version)]
        return f"{self._base_url}/versions/loader/{parts[0]}/{parts[1]}/{parts[2]}/server/jar"

    @staticmethod
    def _expect_list(status: int, data: Any, what: str) -> list:
        if status != 200:
            raise RegistryProtocolError(
                f"Unexpected HTTP {status} from Fabric meta for {what}", registry="fabric-meta"
            )
        if not isinstance(data, list):
            raise RegistryProtocolError(f"Fabric meta returned malformed {what}", registry="fabric-meta")
        return data
