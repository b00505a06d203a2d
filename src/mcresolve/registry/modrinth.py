"""Modrinth registry client: project versions with dependency metadata."""

from __future__ import annotations

import json
import logging
import urllib.parse
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..common.http_client import HttpClient
from ..common.logging_utils import extra_context, is_debug_enabled
from ..constants import Constants, RegistryKinds
from ..errors import PackageNotFound, RegistryProtocolError
from ..versioning.constraints import ExactVersion, LatestCompatible, VersionConstraint
from ..versioning.models import (
    Dependency,
    FileRef,
    GameVersionSupport,
    Incompatibility,
    PackageId,
    VersionSpec,
)
from .base import PackageRegistry

logger = logging.getLogger(__name__)

# Modrinth caps the length of ids=[...] lists; stay well below it.
_BULK_CHUNK = 100
_SIDES = ("client", "server")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent by Modrinth; None when absent or invalid."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class ModrinthRegistry(PackageRegistry):
    """Package registry backed by the Modrinth v2 API."""

    def __init__(self, http: Optional[HttpClient] = None, base_url: Optional[str] = None):
        """Initialize the registry.

        Args:
            http: Shared HTTP client; one is created (and owned) when omitted.
            base_url: Override the API base URL.
        """
        self._owns_http = http is None
        self._http = http or HttpClient()
        self._base_url = (base_url or Constants.REGISTRY_URL_MODRINTH).rstrip("/")

    @property
    def kind(self) -> str:
        return RegistryKinds.MODRINTH.value

    async def close(self) -> None:
        if self._owns_http:
            await self._http.stop()

    async def fetch_versions(self, package: PackageId) -> Sequence[VersionSpec]:
        project = await self._get_project(package)
        slug = urllib.parse.quote(package.slug, safe="")
        payload = await self._get(f"/project/{slug}/version", package)
        if not isinstance(payload, list):
            raise RegistryProtocolError(
                f"Expected a version list for {package}", package=package, registry=self.kind
            )
        items = [self._require_mapping(item, package) for item in payload]
        projects, versions = await self._translate_dependencies(items, package)
        return [self._to_spec(package, project, item, projects, versions) for item in items]

    async def fetch_version_detail(self, package: PackageId, version: str) -> VersionSpec:
        project = await self._get_project(package)
        slug = urllib.parse.quote(package.slug, safe="")
        ref = urllib.parse.quote(version, safe="")
        item = self._require_mapping(
            await self._get(f"/project/{slug}/version/{ref}", package), package
        )
        projects, versions = await self._translate_dependencies([item], package)
        return self._to_spec(package, project, item, projects, versions)

    async def _get(
        self, path: str, package: PackageId, params: Optional[Dict[str, str]] = None
    ) -> Any:
        url = f"{self._base_url}{path}"
        status, _, data = await self._http.get_json(url, context=self.kind, params=params)
        if status == 404:
            logger.warning(
                "HTTP 404 received",
                extra=extra_context(
                    event="http_response",
                    outcome="not_found",
                    status_code=404,
                    package_manager=self.kind,
                ),
            )
            raise PackageNotFound(
                f"{package} does not exist on Modrinth", package=package, registry=self.kind
            )
        if status != 200:
            raise RegistryProtocolError(
                f"Unexpected HTTP {status} from Modrinth for {package}",
                package=package,
                registry=self.kind,
            )
        if data is None:
            raise RegistryProtocolError(
                f"Modrinth returned an undecodable body for {package}",
                package=package,
                registry=self.kind,
            )
        return data

    def _require_mapping(self, item: Any, package: PackageId) -> Mapping[str, Any]:
        if not isinstance(item, Mapping):
            raise RegistryProtocolError(
                f"Malformed version entry for {package}", package=package, registry=self.kind
            )
        return item

    async def _get_project(self, package: PackageId) -> Mapping[str, Any]:
        slug = urllib.parse.quote(package.slug, safe="")
        return self._require_mapping(await self._get(f"/project/{slug}", package), package)

    async def _bulk(self, path: str, ids: Set[str], package: PackageId) -> List[Mapping[str, Any]]:
        results: List[Mapping[str, Any]] = []
        for chunk in _chunks(sorted(ids), _BULK_CHUNK):
            payload = await self._get(path, package, params={"ids": json.dumps(list(chunk))})
            if not isinstance(payload, list):
                raise RegistryProtocolError(
                    f"Expected a list from {path}", package=package, registry=self.kind
                )
            results.extend(entry for entry in payload if isinstance(entry, Mapping))
        return results

    async def _translate_dependencies(
        self, items: Sequence[Mapping[str, Any]], package: PackageId
    ) -> Tuple[Dict[str, str], Dict[str, Tuple[str, str]]]:
        """Map dependency project ids to slugs and version ids to (project id, number)."""
        project_ids: Set[str] = set()
        version_ids: Set[str] = set()
        for item in items:
            for dep in item.get("dependencies") or ():
                if not isinstance(dep, Mapping):
                    continue
                if dep.get("project_id"):
                    project_ids.add(str(dep["project_id"]))
                if dep.get("version_id"):
                    version_ids.add(str(dep["version_id"]))

        versions: Dict[str, Tuple[str, str]] = {}
        if version_ids:
            for entry in await self._bulk("/versions", version_ids, package):
                vid, pid = entry.get("id"), entry.get("project_id")
                if vid and pid:
                    versions[str(vid)] = (str(pid), str(entry.get("version_number") or vid))
                    project_ids.add(str(pid))

        projects: Dict[str, str] = {}
        if project_ids:
            for entry in await self._bulk("/projects", project_ids, package):
                pid, slug = entry.get("id"), entry.get("slug")
                if pid and slug:
                    projects[str(pid)] = str(slug)
        return projects, versions

    def _to_spec(
        self,
        package: PackageId,
        project: Mapping[str, Any],
        item: Mapping[str, Any],
        projects: Mapping[str, str],
        versions: Mapping[str, Tuple[str, str]],
    ) -> VersionSpec:
        number = item.get("version_number") or item.get("id")
        if not number:
            raise RegistryProtocolError(
                f"Version entry without a number for {package}", package=package, registry=self.kind
            )
        own_id = project.get("id")
        dependencies: Dict[PackageId, Dependency] = {}
        incompatibilities: Dict[PackageId, Incompatibility] = {}

        for dep in item.get("dependencies") or ():
            if not isinstance(dep, Mapping):
                continue
            dep_type = str(dep.get("dependency_type") or "").lower()
            if dep_type not in ("required", "incompatible"):
                continue
            project_id = dep.get("project_id")
            constraint: VersionConstraint = LatestCompatible()
            version_id = dep.get("version_id")
            if version_id and str(version_id) in versions:
                pinned_project, pinned_number = versions[str(version_id)]
                project_id = project_id or pinned_project
                constraint = ExactVersion(pinned_number)
            if not project_id or project_id == own_id:
                if is_debug_enabled(logger):
                    logger.debug("Skipping unresolvable dependency %r of %s@%s", dict(dep), package, number)
                continue
            target = PackageId(self.kind, projects.get(str(project_id), str(project_id)))
            if dep_type == "required":
                dependencies[target] = Dependency(target, constraint)
            else:
                incompatibilities[target] = Incompatibility(target, constraint)

        files = tuple(
            FileRef(
                url=str(f.get("url")),
                filename=str(f.get("filename") or ""),
                primary=bool(f.get("primary")),
                size=f.get("size") if isinstance(f.get("size"), int) else None,
            )
            for f in item.get("files") or ()
            if isinstance(f, Mapping) and f.get("url")
        )

        return VersionSpec(
            package=package,
            version=str(number),
            version_id=str(item["id"]) if item.get("id") else None,
            published=parse_timestamp(item.get("date_published")),
            version_type=str(item.get("version_type") or "release"),
            game_versions=GameVersionSupport(
                versions=frozenset(str(v) for v in item.get("game_versions") or ())
            ),
            loaders=frozenset(str(v).lower() for v in item.get("loaders") or ()),
            dependencies=tuple(dependencies[k] for k in sorted(dependencies)),
            incompatibilities=tuple(incompatibilities[k] for k in sorted(incompatibilities)),
            files=files,
            unsupported_sides=frozenset(
                side for side in _SIDES if project.get(f"{side}_side") == "unsupported"
            ),
        )
