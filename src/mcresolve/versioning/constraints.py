"""Constraint model: version requirements, intersections and origins.

A package's requirement is the intersection of every constraint recorded
for it. Intersections are plain interval arithmetic over ``VersionKey``;
"latest compatible" is the identity element and only narrows once another
constraint or a concrete choice pins it down.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple, Union

from .keys import VersionKey

if TYPE_CHECKING:
    from .models import PackageId, ResolutionContext


class VersionConstraint:
    """Base class for the three constraint shapes."""

    def matches(self, version: str) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class LatestCompatible(VersionConstraint):
    """Any version; the engine prefers the newest surviving candidate."""

    def matches(self, version: str) -> bool:
        return True

    def describe(self) -> str:
        return "latest compatible"


@dataclass(frozen=True)
class ExactVersion(VersionConstraint):
    """A single pinned version.

    Build metadata participates only when the pin itself carries it, so
    "0.92.0" accepts "0.92.0+1.20.1" but "0.92.0+1.20.1" does not accept
    "0.92.0+1.20.2".
    """

    version: str

    @property
    def key(self) -> VersionKey:
        return VersionKey(self.version)

    def matches(self, version: str) -> bool:
        if version == self.version:
            return True
        if "+" in self.version:
            return False
        other = VersionKey(version)
        return other.parsed and other == self.key

    def describe(self) -> str:
        return f"={self.version}"


@dataclass(frozen=True)
class Bound:
    """One end of a range."""

    key: VersionKey
    inclusive: bool = True


@dataclass(frozen=True)
class VersionRange(VersionConstraint):
    """Interval with optional inclusive/exclusive ends; None means unbounded."""

    lower: Optional[Bound] = None
    upper: Optional[Bound] = None

    def contains_key(self, key: VersionKey) -> bool:
        if not key.parsed:
            return False
        if self.lower is not None:
            if key < self.lower.key or (key == self.lower.key and not self.lower.inclusive):
                return False
        if self.upper is not None:
            if key > self.upper.key or (key == self.upper.key and not self.upper.inclusive):
                return False
        return True

    def matches(self, version: str) -> bool:
        return self.contains_key(VersionKey(version))

    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower.key > self.upper.key:
            return True
        if self.lower.key == self.upper.key:
            return not (self.lower.inclusive and self.upper.inclusive)
        return False

    def describe(self) -> str:
        parts = []
        if self.lower is not None:
            parts.append(f"{'>=' if self.lower.inclusive else '>'}{self.lower.key}")
        if self.upper is not None:
            parts.append(f"{'<=' if self.upper.inclusive else '<'}{self.upper.key}")
        return ",".join(parts) or "*"


@dataclass(frozen=True)
class NoOverlap:
    """Result of intersecting two constraints that share no version."""

    left: VersionConstraint
    right: VersionConstraint

    def __bool__(self) -> bool:
        return False

    def describe(self) -> str:
        return f"{self.left.describe()} and {self.right.describe()} do not overlap"


def _tighter_lower(a: Optional[Bound], b: Optional[Bound]) -> Optional[Bound]:
    if a is None:
        return b
    if b is None:
        return a
    if a.key != b.key:
        return a if a.key > b.key else b
    return a if not a.inclusive else b


def _tighter_upper(a: Optional[Bound], b: Optional[Bound]) -> Optional[Bound]:
    if a is None:
        return b
    if b is None:
        return a
    if a.key != b.key:
        return a if a.key < b.key else b
    return a if not a.inclusive else b


def intersect(
    left: VersionConstraint, right: VersionConstraint
) -> Union[VersionConstraint, NoOverlap]:
    """Narrow ``left`` by ``right``.

    Returns the combined constraint, or a falsy ``NoOverlap`` when no
    version can satisfy both.
    """
    if isinstance(left, LatestCompatible):
        return right
    if isinstance(right, LatestCompatible):
        return left

    if isinstance(left, ExactVersion) and isinstance(right, ExactVersion):
        if left.matches(right.version):
            return right if "+" in right.version else left
        if right.matches(left.version):
            return left
        return NoOverlap(left, right)

    if isinstance(left, ExactVersion) or isinstance(right, ExactVersion):
        exact, other = (left, right) if isinstance(left, ExactVersion) else (right, left)
        return exact if other.matches(exact.version) else NoOverlap(left, right)

    if isinstance(left, VersionRange) and isinstance(right, VersionRange):
        merged = VersionRange(
            lower=_tighter_lower(left.lower, right.lower),
            upper=_tighter_upper(left.upper, right.upper),
        )
        return NoOverlap(left, right) if merged.is_empty() else merged

    raise TypeError(f"Cannot intersect {type(left).__name__} with {type(right).__name__}")


class OriginKind(Enum):
    """Where a constraint came from."""

    USER = "user"
    DEPENDENCY = "dependency"
    GLOBAL = "global"


@dataclass(frozen=True)
class ConstraintOrigin:
    """Who declared a constraint; ``package``/``version`` are set for dependencies."""

    kind: OriginKind
    package: Optional["PackageId"] = None
    version: Optional[str] = None

    def describe(self) -> str:
        if self.kind is OriginKind.USER:
            return "requested in configuration"
        if self.kind is OriginKind.GLOBAL:
            return "target environment"
        return f"required by {self.package}@{self.version}"


USER_ORIGIN = ConstraintOrigin(OriginKind.USER)
GLOBAL_ORIGIN = ConstraintOrigin(OriginKind.GLOBAL)


@dataclass(frozen=True)
class TaggedConstraint:
    """A constraint together with its origin, kept for diagnostics."""

    constraint: VersionConstraint
    origin: ConstraintOrigin

    def describe(self) -> str:
        return f"{self.constraint.describe()} ({self.origin.describe()})"


@dataclass
class ConstraintSet:
    """Constraints in force during a run.

    Holds the two global constraints and, per package, every tagged
    constraint recorded so far together with their running intersection.
    """

    game_version: TaggedConstraint
    loader_version: TaggedConstraint
    _recorded: Dict["PackageId", List[TaggedConstraint]] = field(default_factory=dict)
    _effective: Dict["PackageId", VersionConstraint] = field(default_factory=dict)

    def add(
        self, package: "PackageId", tagged: TaggedConstraint
    ) -> Union[VersionConstraint, NoOverlap]:
        """Record ``tagged`` for ``package`` and return the new effective constraint.

        On ``NoOverlap`` the constraint is still recorded so conflict reports
        can name it; the effective constraint is left unchanged.
        """
        self._recorded.setdefault(package, []).append(tagged)
        current = self._effective.get(package, LatestCompatible())
        narrowed = intersect(current, tagged.constraint)
        if narrowed:
            self._effective[package] = narrowed
        return narrowed

    def effective(self, package: "PackageId") -> VersionConstraint:
        return self._effective.get(package, LatestCompatible())

    def of(self, package: "PackageId") -> Tuple[TaggedConstraint, ...]:
        return tuple(self._recorded.get(package, ()))

    def packages(self) -> Iterable["PackageId"]:
        return self._recorded.keys()

    def copy(self) -> "ConstraintSet":
        return ConstraintSet(
            game_version=self.game_version,
            loader_version=self.loader_version,
            _recorded={pkg: list(items) for pkg, items in self._recorded.items()},
            _effective=dict(self._effective),
        )


def build_initial_constraints(
    context: "ResolutionContext", loader_constraint: VersionConstraint
) -> ConstraintSet:
    """Seed the constraint set from a resolution context.

    One user constraint per requested package, plus the game-version and
    loader-version globals.
    """
    constraints = ConstraintSet(
        game_version=TaggedConstraint(ExactVersion(context.game_version), GLOBAL_ORIGIN),
        loader_version=TaggedConstraint(loader_constraint, GLOBAL_ORIGIN),
    )
    for request in context.requests:
        constraints.add(request.package, TaggedConstraint(request.constraint, USER_ORIGIN))
    return constraints
