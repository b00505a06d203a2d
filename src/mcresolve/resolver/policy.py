"""Candidate selection policy, kept apart from the search loop."""

from __future__ import annotations

from typing import List, Optional, Sequence

from ..versioning.constraints import ExactVersion, VersionConstraint
from ..versioning.keys import VersionKey
from ..versioning.models import LoaderVersion, PackageId, VersionSpec, candidate_order_key


class CandidatePolicy:
    """Orders the surviving candidates of a package; first is tried first."""

    name = "custom"

    def order(
        self, package: PackageId, candidates: Sequence[VersionSpec], constraint: VersionConstraint
    ) -> List[VersionSpec]:
        raise NotImplementedError

    def pick_loader(
        self, loaders: Sequence[LoaderVersion], constraint: VersionConstraint
    ) -> Optional[LoaderVersion]:
        raise NotImplementedError


class NewestFirstPolicy(CandidatePolicy):
    """Latest compatible: highest version first, newer publish date on ties.

    With ``stable_only`` pre-releases and non-release builds are skipped
    unless the constraint pins them exactly.
    """

    name = "newest-first"

    def __init__(self, stable_only: bool = False):
        self.stable_only = stable_only

    def order(self, package, candidates, constraint):
        pinned = isinstance(constraint, ExactVersion)
        kept = [c for c in candidates if pinned or not self.stable_only or c.stable]
        return sorted(kept, key=candidate_order_key, reverse=True)

    def pick_loader(self, loaders, constraint):
        pinned = isinstance(constraint, ExactVersion)
        matching = [
            l for l in loaders
            if constraint.matches(l.version) and (pinned or l.stable)
        ]
        if not matching:
            return None
        return max(matching, key=lambda l: (VersionKey(l.version), l.build or 0))
