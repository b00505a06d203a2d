"""Global compatibility filter: game version, loader and environment side."""

from __future__ import annotations

from typing import Optional

from ..versioning.models import ArtifactKind, VersionSpec


def rejection_reason(
    spec: VersionSpec,
    kind: ArtifactKind,
    *,
    game_version: str,
    loader: str,
    loader_version: str,
    side: Optional[str] = None,
) -> Optional[str]:
    """Why ``spec`` can never be used in this environment; None when it can."""
    if not spec.game_versions.supports(game_version):
        return f"supports game versions {spec.game_versions.describe()}, not {game_version}"
    tag = kind.loader_tag(loader)
    if spec.loaders and tag not in spec.loaders:
        return f"declares loaders {', '.join(sorted(spec.loaders))}, not {tag}"
    if kind.checks_loader_version and spec.loader_range is not None:
        if not spec.loader_range.matches(loader_version):
            return f"needs {loader} {spec.loader_range.describe()}, not {loader_version}"
    if side and side in spec.unsupported_sides:
        return f"does not support the {side} side"
    return None
