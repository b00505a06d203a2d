"""Offline registry snapshot loaded from YAML/JSON or an in-memory mapping.

Document shape::

    packages:
      sodium:
        server_side: optional          # "unsupported" prunes it for servers
        versions:
          - version: 0.5.3
            id: abc123                 # optional registry id
            published: 2023-09-20T10:00:00Z
            type: release
            game_versions: ["1.20.1"]  # exact versions or ranges (">=1.20,<1.21")
            loaders: [fabric]
            loader_version: ">=0.14.21"
            dependencies: {fabric-api: ">=0.88.0"}
            incompatibilities: {phosphor: "*"}
            files: [{url: ..., filename: ..., primary: true}]
    loaders:
      "1.20.1": ["0.15.0", {version: "0.15.1", stable: false}]
    installers: ["1.0.0"]

Quote two-part game versions used as ``loaders`` keys ("1.20"); YAML reads
them as floats otherwise.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

import yaml

from ..constants import RegistryKinds
from ..errors import ConstraintSyntaxError, PackageNotFound, RegistryProtocolError
from ..versioning.models import (
    Dependency,
    FileRef,
    Incompatibility,
    InstallerVersion,
    LoaderVersion,
    PackageId,
    VersionSpec,
)
from ..versioning.parser import game_support_from_strings, parse_constraint, parse_package_name
from .base import LoaderRegistry, PackageRegistry
from .modrinth import parse_timestamp

logger = logging.getLogger(__name__)


def load_index(path: str) -> Dict[str, Any]:
    """Read a snapshot document; JSON by extension, YAML otherwise."""
    with open(path, "r", encoding="utf-8") as fh:
        if path.lower().endswith(".json"):
            data = json.load(fh)
        else:
            data = yaml.safe_load(fh)
    if not isinstance(data, dict):
        raise RegistryProtocolError(f"Registry snapshot {path} is not a mapping", registry="local")
    return data


def _timestamp(value: Any) -> Optional[datetime]:
    # YAML already turns unquoted ISO timestamps into datetime/date objects.
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return parse_timestamp(value)


class LocalIndexRegistry(PackageRegistry):
    """Package registry answering from a snapshot document."""

    def __init__(
        self,
        index: Mapping[str, Any],
        *,
        kind: str = RegistryKinds.LOCAL.value,
        omit_details_in_listing: bool = False,
    ):
        """Initialize the registry.

        Args:
            index: Snapshot document (see module docstring).
            kind: Registry kind this snapshot answers for.
            omit_details_in_listing: Strip dependency data from listings so
                callers must use ``fetch_version_detail``.
        """
        packages = index.get("packages") or {}
        if not isinstance(packages, Mapping):
            raise RegistryProtocolError("'packages' must be a mapping", registry=kind)
        self._packages = {str(name).lower(): entry for name, entry in packages.items()}
        self._kind = kind
        self._omit_details = omit_details_in_listing

    @classmethod
    def from_file(cls, path: str, **kwargs: Any) -> "LocalIndexRegistry":
        return cls(load_index(os.path.expanduser(path)), **kwargs)

    @property
    def kind(self) -> str:
        return self._kind

    async def fetch_versions(self, package: PackageId) -> Sequence[VersionSpec]:
        specs = self._specs(package)
        if self._omit_details:
            return [replace(s, dependencies=(), incompatibilities=(), complete=False) for s in specs]
        return specs

    async def fetch_version_detail(self, package: PackageId, version: str) -> VersionSpec:
        for spec in self._specs(package):
            if spec.version == version or spec.version_id == version:
                return spec
        raise PackageNotFound(
            f"{package} has no version {version} in the local index", package=package, registry=self._kind
        )

    def _specs(self, package: PackageId) -> Sequence[VersionSpec]:
        entry = self._packages.get(package.slug)
        if entry is None:
            raise PackageNotFound(f"{package} is not in the local index", package=package, registry=self._kind)
        if not isinstance(entry, Mapping) or not isinstance(entry.get("versions"), list):
            raise RegistryProtocolError(
                f"Entry for {package} needs a 'versions' list", package=package, registry=self._kind
            )
        unsupported = frozenset(
            side for side in ("client", "server") if entry.get(f"{side}_side") == "unsupported"
        )
        try:
            return [self._to_spec(package, item, unsupported) for item in entry["versions"]]
        except (ConstraintSyntaxError, TypeError, KeyError, AttributeError) as exc:
            raise RegistryProtocolError(
                f"Malformed version entry for {package}: {exc}", package=package, registry=self._kind
            ) from exc

    def _to_spec(self, package: PackageId, item: Mapping[str, Any], unsupported) -> VersionSpec:
        loader_range = item.get("loader_version")
        return VersionSpec(
            package=package,
            version=str(item["version"]),
            version_id=str(item["id"]) if item.get("id") else None,
            published=_timestamp(item.get("published")),
            version_type=str(item.get("type") or "release"),
            game_versions=game_support_from_strings(item.get("game_versions") or ()),
            loaders=frozenset(str(v).lower() for v in item.get("loaders") or ()),
            loader_range=parse_constraint(str(loader_range)) if loader_range else None,
            dependencies=tuple(
                Dependency(self._package(name), parse_constraint(None if raw is None else str(raw)))
                for name, raw in (item.get("dependencies") or {}).items()
            ),
            incompatibilities=tuple(
                Incompatibility(self._package(name), parse_constraint(None if raw is None else str(raw)))
                for name, raw in (item.get("incompatibilities") or {}).items()
            ),
            files=tuple(
                FileRef(
                    url=str(f["url"]),
                    filename=str(f.get("filename") or os.path.basename(str(f["url"]))),
                    primary=bool(f.get("primary")),
                    size=f.get("size"),
                )
                for f in item.get("files") or ()
            ),
            unsupported_sides=unsupported,
        )

    def _package(self, name: str) -> PackageId:
        return parse_package_name(str(name), default_registry=self._kind)


class LocalLoaderRegistry(LoaderRegistry):
    """Loader registry answering from the ``loaders`` section of a snapshot."""

    def __init__(self, index: Mapping[str, Any], *, name: str = "fabric"):
        self._loaders = {str(k): v for k, v in (index.get("loaders") or {}).items()}
        self._installers = index.get("installers") or ()
        self._name = name

    @classmethod
    def from_file(cls, path: str, **kwargs: Any) -> "LocalLoaderRegistry":
        return cls(load_index(os.path.expanduser(path)), **kwargs)

    @property
    def name(self) -> str:
        return self._name

    async def fetch_loader_versions(self, game_version: str) -> Sequence[LoaderVersion]:
        return tuple(
            LoaderVersion(version=str(e["version"]), stable=bool(e.get("stable", True)))
            if isinstance(e, Mapping)
            else LoaderVersion(version=str(e))
            for e in self._loaders.get(game_version) or ()
        )

    async def fetch_installer_versions(self) -> Sequence[InstallerVersion]:
        return tuple(
            InstallerVersion(version=str(e["version"]), stable=bool(e.get("stable", True)))
            if isinstance(e, Mapping)
            else InstallerVersion(version=str(e))
            for e in self._installers
        )
