"""Ordered version keys for mod, loader and game versions."""

from __future__ import annotations

import functools
import re
from typing import Optional, Tuple

import semantic_version

# "mc1.20.1-0.5.3" style prefixes that pin a game version in front of the mod version.
_MC_PREFIX = re.compile(r"^mc\d+(?:\.\d+)*[-_]", re.IGNORECASE)
_GAME_RELEASE = re.compile(r"^\d+\.\d+(?:\.\d+)?(?:-(?:pre|rc)\d+)?$")


def _coerce(raw: str) -> Tuple[Optional[semantic_version.Version], Tuple[int, ...]]:
    """Coerce a free-form version string into a semver value.

    Build metadata after "+" is dropped. Extra dotted components beyond
    major.minor.patch ("1.2.3.4") are kept as a numeric tail.
    """
    core = raw.split("+", 1)[0].strip()
    core = _MC_PREFIX.sub("", core)
    if core[:1] in ("v", "V"):
        core = core[1:]
    if not core:
        return None, ()
    try:
        coerced = semantic_version.Version.coerce(core)
    except ValueError:
        return None, ()

    extra: Tuple[int, ...] = ()
    if coerced.build:
        if all(part.isdigit() for part in coerced.build):
            extra = tuple(int(part) for part in coerced.build)
    base = semantic_version.Version(
        major=coerced.major,
        minor=coerced.minor,
        patch=coerced.patch,
        prerelease=coerced.prerelease,
    )
    return base, extra


@functools.total_ordering
class VersionKey:
    """Comparable wrapper around a raw version string.

    Parseable versions order by semantic version; unparseable ones sort
    below every parseable version and order among themselves by raw text.
    """

    __slots__ = ("raw", "semver", "extra")

    def __init__(self, raw: str, *, game: bool = False):
        self.raw = str(raw).strip()
        if game and not _GAME_RELEASE.match(self.raw):
            # Snapshots ("23w31a") have no meaningful ordering against releases.
            self.semver, self.extra = None, ()
        else:
            self.semver, self.extra = _coerce(self.raw)

    @classmethod
    def for_game(cls, raw: str) -> "VersionKey":
        return cls(raw, game=True)

    @property
    def parsed(self) -> bool:
        return self.semver is not None

    @property
    def prerelease(self) -> bool:
        return bool(self.semver is not None and self.semver.prerelease)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionKey):
            return NotImplemented
        if self.parsed and other.parsed:
            return (self.semver, self.extra) == (other.semver, other.extra)
        if self.parsed or other.parsed:
            return False
        return self.raw == other.raw

    def __lt__(self, other: "VersionKey") -> bool:
        if not isinstance(other, VersionKey):
            return NotImplemented
        if self.parsed and other.parsed:
            return (self.semver, self.extra) < (other.semver, other.extra)
        if self.parsed != other.parsed:
            return not self.parsed
        return self.raw < other.raw

    def __hash__(self) -> int:
        if self.parsed:
            return hash((self.semver, self.extra))
        return hash(self.raw)

    def __repr__(self) -> str:
        return f"VersionKey({self.raw!r})"

    def __str__(self) -> str:
        return self.raw
