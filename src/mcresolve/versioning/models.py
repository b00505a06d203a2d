"""Data models for packages, candidate versions and resolution inputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Iterator, Optional, Sequence, Tuple

from .constraints import LatestCompatible, VersionConstraint, VersionRange
from .keys import VersionKey

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ArtifactKind(Enum):
    """Artifact kinds a deployment can request."""

    MOD = "mod"
    DATAPACK = "datapack"
    RESOURCEPACK = "resourcepack"

    @property
    def section(self) -> str:
        """Name of the configuration section listing this kind."""
        return f"{self.value}s"

    def loader_tag(self, loader: str) -> str:
        """Loader name a candidate must list to be usable as this kind."""
        if self is ArtifactKind.DATAPACK:
            return "datapack"
        if self is ArtifactKind.RESOURCEPACK:
            return "minecraft"
        return loader

    @property
    def checks_loader_version(self) -> bool:
        return self is ArtifactKind.MOD


@dataclass(frozen=True, order=True)
class PackageId:
    """Registry-qualified package name, the key in every map."""

    registry: str
    slug: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "registry", self.registry.strip().lower())
        object.__setattr__(self, "slug", self.slug.strip().lower())

    def __str__(self) -> str:
        return f"{self.registry}:{self.slug}"


@dataclass(frozen=True)
class FileRef:
    """A downloadable file attached to a version."""

    url: str
    filename: str
    primary: bool = False
    size: Optional[int] = None


@dataclass(frozen=True)
class GameVersionSupport:
    """Game versions a candidate supports; empty means unrestricted."""

    versions: FrozenSet[str] = frozenset()
    ranges: Tuple[VersionRange, ...] = ()

    @property
    def unrestricted(self) -> bool:
        return not self.versions and not self.ranges

    def supports(self, game_version: str) -> bool:
        if self.unrestricted or game_version in self.versions:
            return True
        key = VersionKey.for_game(game_version)
        return any(r.contains_key(key) for r in self.ranges)

    def describe(self) -> str:
        if self.unrestricted:
            return "any"
        parts = sorted(self.versions, key=VersionKey.for_game)
        parts.extend(r.describe() for r in self.ranges)
        return ", ".join(parts)


@dataclass(frozen=True)
class Dependency:
    """A required package with the versions it accepts."""

    package: PackageId
    constraint: VersionConstraint = field(default_factory=LatestCompatible)


@dataclass(frozen=True)
class Incompatibility:
    """A package (optionally version-qualified) that must not be co-installed."""

    package: PackageId
    constraint: VersionConstraint = field(default_factory=LatestCompatible)

    def matches(self, candidate: "VersionSpec") -> bool:
        return candidate.package == self.package and self.constraint.matches(candidate.version)


@dataclass(frozen=True)
class VersionSpec:
    """One published version of a package with its compatibility facets.

    Instances are immutable once fetched. ``complete`` is False when the
    listing omitted dependency data and the detail endpoint must be asked.
    """

    package: PackageId
    version: str
    version_id: Optional[str] = None
    published: Optional[datetime] = None
    version_type: str = "release"
    game_versions: GameVersionSupport = field(default_factory=GameVersionSupport)
    loaders: FrozenSet[str] = frozenset()
    loader_range: Optional[VersionConstraint] = None
    dependencies: Tuple[Dependency, ...] = ()
    incompatibilities: Tuple[Incompatibility, ...] = ()
    files: Tuple[FileRef, ...] = ()
    unsupported_sides: FrozenSet[str] = frozenset()
    complete: bool = True

    @property
    def key(self) -> VersionKey:
        return VersionKey(self.version)

    @property
    def stable(self) -> bool:
        return self.version_type == "release" and not self.key.prerelease

    @property
    def primary_file(self) -> Optional[FileRef]:
        for ref in self.files:
            if ref.primary:
                return ref
        return self.files[0] if self.files else None

    def ref(self) -> str:
        return f"{self.package}@{self.version}"


def candidate_order_key(spec: VersionSpec):
    """Sort key for newest-first ordering: version, then publish time, then raw text."""
    published = spec.published or _EPOCH
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    return (spec.key, published, spec.version)


def sort_candidates(versions: Sequence[VersionSpec]) -> Tuple[VersionSpec, ...]:
    """Return ``versions`` newest first, deterministically."""
    return tuple(sorted(versions, key=candidate_order_key, reverse=True))


@dataclass(frozen=True)
class CandidateSet:
    """Every known version of one package, newest first."""

    package: PackageId
    versions: Tuple[VersionSpec, ...]
    fetched_at: datetime

    def __iter__(self) -> Iterator[VersionSpec]:
        return iter(self.versions)

    def __len__(self) -> int:
        return len(self.versions)

    def find(self, version: str) -> Optional[VersionSpec]:
        for spec in self.versions:
            if spec.version == version or spec.version_id == version:
                return spec
        return None


@dataclass(frozen=True)
class PackageRequest:
    """One package requested by the configuration."""

    package: PackageId
    kind: ArtifactKind
    constraint: VersionConstraint = field(default_factory=LatestCompatible)
    raw: Optional[str] = None


@dataclass(frozen=True)
class ResolutionContext:
    """Immutable inputs of one resolution run."""

    game_version: str
    loader_version: str
    requests: Tuple[PackageRequest, ...] = ()
    loader: str = "fabric"
    side: Optional[str] = None
    project: str = ""
    tool_version: Optional[str] = None
    launch_cmd: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        seen = set()
        for request in self.requests:
            if request.package in seen:
                raise ValueError(f"Package {request.package} is requested more than once")
            seen.add(request.package)

    @property
    def requested(self) -> Tuple[PackageId, ...]:
        return tuple(request.package for request in self.requests)

    def request_for(self, package: PackageId) -> Optional[PackageRequest]:
        for request in self.requests:
            if request.package == package:
                return request
        return None


@dataclass(frozen=True)
class LoaderVersion:
    """A loader build listed by the loader-metadata registry."""

    version: str
    stable: bool = True
    build: Optional[int] = None


@dataclass(frozen=True)
class InstallerVersion:
    """A loader installer build."""

    version: str
    stable: bool = True
    url: Optional[str] = None
