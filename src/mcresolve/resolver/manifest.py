"""Resolved manifests: the immutable output of a successful run."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..versioning.constraints import LatestCompatible, TaggedConstraint, VersionConstraint
from ..versioning.models import ArtifactKind, PackageId, VersionSpec
from .compat import rejection_reason


@dataclass(frozen=True)
class LoaderPin:
    """The concrete loader the manifest was resolved against."""

    name: str
    version: str
    game_version: str
    installer_version: Optional[str] = None
    server_jar_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "game_version": self.game_version,
            "installer_version": self.installer_version,
            "server_jar_url": self.server_jar_url,
        }


@dataclass(frozen=True)
class Provenance:
    """Everything the builder needs besides the assignment itself."""

    project: str
    game_version: str
    loader: LoaderPin
    kinds: Mapping[PackageId, ArtifactKind]
    constraints: Mapping[PackageId, Tuple[TaggedConstraint, ...]]
    effective: Mapping[PackageId, VersionConstraint]
    fetched_at: Mapping[PackageId, datetime] = field(default_factory=dict)
    side: Optional[str] = None
    launch_cmd: Tuple[str, ...] = ()
    policy: str = ""


@dataclass(frozen=True)
class ManifestEntry:
    """One resolved package with the constraints that justified it."""

    package: PackageId
    kind: ArtifactKind
    spec: VersionSpec
    constraint: VersionConstraint
    justification: Tuple[TaggedConstraint, ...]
    fetched_at: Optional[datetime] = None

    @property
    def version(self) -> str:
        return self.spec.version

    def to_dict(self, include_fetch_times: bool = False) -> Dict[str, Any]:
        spec = self.spec
        data: Dict[str, Any] = {
            "package": str(self.package),
            "kind": self.kind.value,
            "version": spec.version,
            "version_id": spec.version_id,
            "published": spec.published.isoformat() if spec.published else None,
            "constraint": self.constraint.describe(),
            "required_by": [
                {"constraint": t.constraint.describe(), "origin": t.origin.describe()}
                for t in self.justification
            ],
            "dependencies": {str(d.package): d.constraint.describe() for d in spec.dependencies},
            "files": [
                {"url": f.url, "filename": f.filename, "primary": f.primary, "size": f.size}
                for f in spec.files
            ],
        }
        if include_fetch_times:
            data["fetched_at"] = self.fetched_at.isoformat() if self.fetched_at else None
        return data


@dataclass(frozen=True)
class ResolvedManifest:
    """Final mapping of every package to its chosen version.

    Entries are sorted by PackageId. The manifest shares nothing mutable
    with the cache that produced it.
    """

    project: str
    game_version: str
    loader: LoaderPin
    entries: Tuple[ManifestEntry, ...]
    side: Optional[str] = None
    launch_cmd: Tuple[str, ...] = ()
    policy: str = ""

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, package: object) -> bool:
        return any(entry.package == package for entry in self.entries)

    def __getitem__(self, package: PackageId) -> ManifestEntry:
        for entry in self.entries:
            if entry.package == package:
                return entry
        raise KeyError(package)

    def get(self, package: PackageId) -> Optional[ManifestEntry]:
        try:
            return self[package]
        except KeyError:
            return None

    @property
    def packages(self) -> Tuple[PackageId, ...]:
        return tuple(entry.package for entry in self.entries)

    def versions(self) -> Dict[PackageId, str]:
        return {entry.package: entry.version for entry in self.entries}

    def to_dict(self, include_fetch_times: bool = False) -> Dict[str, Any]:
        return {
            "project": self.project,
            "game_version": self.game_version,
            "loader": self.loader.to_dict(),
            "side": self.side,
            "launch_cmd": list(self.launch_cmd),
            "policy": self.policy,
            "packages": [e.to_dict(include_fetch_times) for e in self.entries],
        }

    def to_json(self, include_fetch_times: bool = False, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(include_fetch_times), indent=indent, sort_keys=True)


class ManifestBuilder:
    """Turns a finished assignment into a ResolvedManifest. No I/O."""

    def build(self, assignment: Mapping[PackageId, VersionSpec], provenance: Provenance) -> ResolvedManifest:
        entries: List[ManifestEntry] = []
        for package in sorted(assignment):
            entries.append(
                ManifestEntry(
                    package=package,
                    kind=provenance.kinds.get(package, ArtifactKind.MOD),
                    spec=copy.deepcopy(assignment[package]),
                    constraint=provenance.effective.get(package, LatestCompatible()),
                    justification=tuple(provenance.constraints.get(package, ())),
                    fetched_at=provenance.fetched_at.get(package),
                )
            )
        return ResolvedManifest(
            project=provenance.project,
            game_version=provenance.game_version,
            loader=provenance.loader,
            entries=tuple(entries),
            side=provenance.side,
            launch_cmd=tuple(provenance.launch_cmd),
            policy=provenance.policy,
        )


def verify_manifest(manifest: ResolvedManifest) -> Sequence[str]:
    """Re-check a manifest without the search trace.

    Returns:
        Human-readable violations; empty when the manifest is consistent.
    """
    problems: List[str] = []
    chosen = {entry.package: entry.spec for entry in manifest.entries}

    for entry in manifest.entries:
        spec = entry.spec
        reason = rejection_reason(
            spec,
            entry.kind,
            game_version=manifest.game_version,
            loader=manifest.loader.name,
            loader_version=manifest.loader.version,
            side=manifest.side,
        )
        if reason:
            problems.append(f"{spec.ref()} {reason}")
        for tagged in entry.justification:
            if not tagged.constraint.matches(spec.version):
                problems.append(f"{spec.ref()} violates {tagged.describe()}")
        for dep in spec.dependencies:
            target = chosen.get(dep.package)
            if target is None:
                problems.append(f"{spec.ref()} depends on {dep.package}, which is missing")
            elif not dep.constraint.matches(target.version):
                problems.append(
                    f"{spec.ref()} needs {dep.package} {dep.constraint.describe()}, got {target.version}"
                )
        for inc in spec.incompatibilities:
            other = chosen.get(inc.package)
            if other is not None and inc.matches(other):
                problems.append(f"{spec.ref()} is incompatible with {other.ref()}")
    return problems
