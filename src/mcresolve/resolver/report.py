"""Conflict reports: why a run could not produce a manifest."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..versioning.constraints import TaggedConstraint
from ..versioning.models import PackageId


class ConflictReason(Enum):
    """Kinds of unsatisfiable situations."""

    NO_COMPATIBLE_VERSION = "no_compatible_version"
    CONSTRAINT_CONFLICT = "constraint_conflict"
    NO_MATCHING_CANDIDATE = "no_matching_candidate"
    INCOMPATIBLE = "incompatible"


@dataclass(frozen=True)
class ConflictEntry:
    """One unsatisfiable constraint and the choices that led to it.

    ``culprit`` is the package version whose declaration triggered the
    conflict (a dependency edge or an incompatibility), when there is one.
    ``chain`` lists the decisions in force, outermost first.
    """

    package: PackageId
    reason: ConflictReason
    constraints: Tuple[TaggedConstraint, ...] = ()
    culprit: Optional[PackageId] = None
    culprit_version: Optional[str] = None
    chain: Tuple[str, ...] = ()
    detail: str = ""

    def _dedupe_key(self):
        return (self.package, self.reason, self.constraints, self.culprit, self.culprit_version, self.detail)

    def describe(self) -> str:
        lines = [f"{self.package}: {self.reason.value.replace('_', ' ')}"]
        if self.detail:
            lines[0] += f" ({self.detail})"
        if self.culprit is not None:
            lines.append(f"  caused by {self.culprit}@{self.culprit_version}")
        for tagged in self.constraints:
            lines.append(f"  - {tagged.describe()}")
        if self.chain:
            lines.append(f"  while trying: {' -> '.join(self.chain)}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package": str(self.package),
            "reason": self.reason.value,
            "detail": self.detail,
            "culprit": f"{self.culprit}@{self.culprit_version}" if self.culprit else None,
            "constraints": [
                {"constraint": t.constraint.describe(), "origin": t.origin.describe()}
                for t in self.constraints
            ],
            "chain": list(self.chain),
        }


class ConflictReport:
    """Accumulated conflict entries of one run, without duplicates."""

    def __init__(self) -> None:
        self._entries: List[ConflictEntry] = []
        self._seen = set()

    def add(self, entry: ConflictEntry) -> bool:
        """Record ``entry``; False when an equivalent entry is already present."""
        key = entry._dedupe_key()
        if key in self._seen:
            return False
        self._seen.add(key)
        self._entries.append(entry)
        return True

    @property
    def entries(self) -> Tuple[ConflictEntry, ...]:
        return tuple(self._entries)

    def packages(self) -> Tuple[PackageId, ...]:
        """Every package named by an entry, as subject or culprit."""
        named = set()
        for entry in self._entries:
            named.add(entry.package)
            if entry.culprit is not None:
                named.add(entry.culprit)
        return tuple(sorted(named))

    def for_package(self, package: PackageId) -> Tuple[ConflictEntry, ...]:
        return tuple(e for e in self._entries if e.package == package)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __iter__(self) -> Iterator[ConflictEntry]:
        return iter(self._entries)

    def describe(self) -> str:
        return "\n".join(entry.describe() for entry in self._entries)

    def to_dict(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]
