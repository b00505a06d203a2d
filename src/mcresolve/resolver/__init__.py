"""Resolution engine, candidate policy, conflict reports and manifests."""

from .engine import Decision, ResolutionEngine, SearchState
from .manifest import LoaderPin, ManifestBuilder, ManifestEntry, Provenance, ResolvedManifest, verify_manifest
from .policy import CandidatePolicy, NewestFirstPolicy
from .report import ConflictEntry, ConflictReason, ConflictReport

__all__ = [
    "CandidatePolicy",
    "ConflictEntry",
    "ConflictReason",
    "ConflictReport",
    "Decision",
    "LoaderPin",
    "ManifestBuilder",
    "ManifestEntry",
    "NewestFirstPolicy",
    "Provenance",
    "ResolutionEngine",
    "ResolvedManifest",
    "SearchState",
    "verify_manifest",
]
