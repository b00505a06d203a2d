"""mcresolve: version resolution for Minecraft server deployments."""

from .errors import (
    ConstraintSyntaxError,
    NoCompatibleVersion,
    PackageNotFound,
    RegistryError,
    RegistryProtocolError,
    RegistryUnavailable,
    ResolutionError,
    ResolutionTimedOut,
    Unsatisfiable,
)
from .resolver import ResolvedManifest, verify_manifest
from .service import ResolutionResult, ResolutionService, UpdateCandidate, resolve_sync
from .versioning.models import ArtifactKind, PackageId, PackageRequest, ResolutionContext
from .versioning.parser import context_from_config, parse_constraint

__version__ = "0.1.0"

__all__ = [
    "ArtifactKind",
    "ConstraintSyntaxError",
    "NoCompatibleVersion",
    "PackageId",
    "PackageNotFound",
    "PackageRequest",
    "RegistryError",
    "RegistryProtocolError",
    "RegistryUnavailable",
    "ResolutionContext",
    "ResolutionError",
    "ResolutionResult",
    "ResolutionService",
    "ResolutionTimedOut",
    "ResolvedManifest",
    "Unsatisfiable",
    "UpdateCandidate",
    "context_from_config",
    "parse_constraint",
    "resolve_sync",
    "verify_manifest",
]
