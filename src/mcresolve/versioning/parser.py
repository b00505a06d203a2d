"""Parsing of constraint strings, package names and deployment configuration."""

from __future__ import annotations

import re
from typing import Any, List, Mapping, Optional, Tuple

import semantic_version
from semantic_version.base import AllOf, Always, AnyOf, Never, Range

from ..constants import Constants
from ..errors import ConstraintSyntaxError
from .constraints import (
    Bound,
    ExactVersion,
    LatestCompatible,
    NoOverlap,
    VersionConstraint,
    VersionRange,
    intersect,
)
from .keys import VersionKey
from .models import ArtifactKind, GameVersionSupport, PackageId, PackageRequest, ResolutionContext

_LATEST_TOKENS = {"", "*", "x", "latest", "latest compatible", "latest-compatible"}
_BRACKET = re.compile(r"^([\[(])\s*([^,\s]*)\s*,\s*([^,\s]*)\s*([\])])$")
_WILDCARD_PART = re.compile(r"(^|\.)[xX*](\.|$)")
_RANGE_MARKERS = set("<>=^~!*[](),|")


def _is_plain_version(text: str) -> bool:
    """A bare version ("0.5.3+mc1.20.1") pins exactly; ranges need an operator."""
    return not (_RANGE_MARKERS & set(text) or " " in text or _WILDCARD_PART.search(text))


def _bracket_to_simple(match: "re.Match[str]") -> str:
    """Interval notation ([1.0,2.0), (,1.5], [1.0,)) as a comparator list."""
    opening, lower, upper, closing = match.groups()
    parts = []
    if lower:
        parts.append((">=" if opening == "[" else ">") + lower)
    if upper:
        parts.append(("<=" if closing == "]" else "<") + upper)
    return ",".join(parts)


def _semver_clause(text: str):
    """Parse with npm syntax first, then the comma-separated simple syntax."""
    try:
        return semantic_version.NpmSpec(text).clause
    except ValueError:
        try:
            return semantic_version.SimpleSpec(text).clause
        except ValueError as exc:
            raise ConstraintSyntaxError(f"Invalid version constraint {text!r}: {exc}") from exc


def _ranges(clause, spec: str) -> List[Range]:
    if isinstance(clause, Range):
        return [clause]
    if isinstance(clause, Always):
        return []
    if isinstance(clause, AllOf):
        return [r for sub in clause.clauses for r in _ranges(sub, spec)]
    if isinstance(clause, Never):
        raise ConstraintSyntaxError(f"Constraint {spec!r} admits no version")
    if isinstance(clause, AnyOf):
        return _merge_prerelease_split(clause, spec)
    raise ConstraintSyntaxError(f"Unsupported constraint {spec!r}")


def _merge_prerelease_split(clause: AnyOf, spec: str) -> List[Range]:
    """Undo NpmSpec's split of prerelease bounds into two alternatives.

    Prereleases order naturally among releases here, so ">=1.0.0-beta <2.0.0"
    is the single interval [1.0.0-beta, 2.0.0).
    """
    groups = [_ranges(group, spec) for group in clause.clauses]
    tagged = [g for g in groups if any(r.target.prerelease for r in g)]
    if len(groups) != 2 or len(tagged) != 1:
        raise ConstraintSyntaxError(f"Union ranges are not supported: {spec!r}")
    prerelease = tagged[0]
    releases = groups[1] if prerelease is groups[0] else groups[0]
    kept = [r for r in prerelease if r.target.prerelease]
    truncated = {(r.operator, r.target.truncate()) for r in kept}
    kept.extend(r for r in releases if (r.operator, r.target) not in truncated)
    return kept


def _to_constraint(item: Range, spec: str) -> VersionConstraint:
    target = str(item.target)
    if item.operator == Range.OP_EQ:
        return ExactVersion(target)
    key = VersionKey(target)
    if item.operator == Range.OP_GTE:
        return VersionRange(lower=Bound(key, True))
    if item.operator == Range.OP_GT:
        return VersionRange(lower=Bound(key, False))
    if item.operator == Range.OP_LTE:
        return VersionRange(upper=Bound(key, True))
    if item.operator == Range.OP_LT:
        return VersionRange(upper=Bound(key, False))
    raise ConstraintSyntaxError(f"Exclusions are not supported: {spec!r}")


def parse_constraint(raw: Optional[str]) -> VersionConstraint:
    """Parse a constraint string from the configuration or a registry.

    Ranges follow semantic_version's npm grammar (^, ~, x-ranges, hyphen
    ranges, partial versions covering their whole line) with the simple
    comma-separated grammar (==, ~=) as fallback. Interval notation is
    rewritten into a comparator list first.

    Args:
        raw: Constraint text; None or "latest" means latest compatible.

    Returns:
        LatestCompatible, ExactVersion or VersionRange.

    Raises:
        ConstraintSyntaxError: the text is malformed or describes an empty range.
    """
    if raw is None:
        return LatestCompatible()
    spec = str(raw).strip()
    if spec.lower() in _LATEST_TOKENS:
        return LatestCompatible()
    if "||" in spec:
        raise ConstraintSyntaxError(f"Union ranges are not supported: {spec!r}")
    if _is_plain_version(spec):
        return ExactVersion(spec)

    bracket = _BRACKET.match(spec)
    if bracket:
        text = _bracket_to_simple(bracket)
        if not text:
            return LatestCompatible()
    else:
        # "> = 1.0" and "1.0 , 2.0" spacing
        text = re.sub(r"(>=|<=|==|~=|!=|[<>=^~])\s+", r"\1", spec)
        text = re.sub(r"\s*,\s*", ",", text)

    result: VersionConstraint = LatestCompatible()
    for item in _ranges(_semver_clause(text), spec):
        narrowed = intersect(result, _to_constraint(item, spec))
        if isinstance(narrowed, NoOverlap):
            raise ConstraintSyntaxError(f"Constraint {spec!r} admits no version")
        result = narrowed

    if isinstance(result, VersionRange) and result.is_empty():
        raise ConstraintSyntaxError(f"Constraint {spec!r} admits no version")
    return result


def tokenize_registry_prefix(s: str) -> Tuple[Optional[str], str]:
    """Return (registry or None, slug) using the leftmost-colon rule."""
    s = s.strip()
    if ":" not in s:
        return None, s
    registry, slug = s.split(":", 1)
    return registry.strip() or None, slug.strip()


def parse_package_name(name: str, default_registry: Optional[str] = None) -> PackageId:
    """Turn "sodium" or "modrinth:sodium" into a PackageId."""
    registry, slug = tokenize_registry_prefix(name)
    if not slug:
        raise ConstraintSyntaxError(f"Empty package name in {name!r}")
    return PackageId(registry or default_registry or Constants.DEFAULT_REGISTRY, slug)


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConstraintSyntaxError(f"Section [{name}] must be a table of name = constraint")
    # mc.toml writers sometimes nest entries under "installed".
    installed = value.get("installed")
    if isinstance(installed, Mapping) and len(value) == 1:
        return installed
    return value


def context_from_config(
    config: Mapping[str, Any],
    *,
    default_registry: Optional[str] = None,
    side: Optional[str] = None,
) -> ResolutionContext:
    """Build a ResolutionContext from a parsed mc.toml-shaped mapping.

    Args:
        config: Mapping with ``name``, ``versions``, ``mods``, ``datapacks``,
            ``resourcepacks`` and ``console`` entries.
        default_registry: Registry kind for unqualified names.
        side: Optional environment side ("server" or "client") to enforce.

    Returns:
        ResolutionContext with one request per configured package, in
        configuration order.
    """
    versions = config.get("versions") or {}
    if not isinstance(versions, Mapping):
        raise ConstraintSyntaxError("Section [versions] must be a table")
    game_version = versions.get("mc_version") or versions.get("game_version")
    if not game_version:
        raise ConstraintSyntaxError("versions.mc_version is required")
    loader_version = versions.get("fabric_version") or versions.get("loader_version") or "latest"

    requests: List[PackageRequest] = []
    for kind in ArtifactKind:
        for name, raw in _section(config, kind.section).items():
            raw_text = None if raw is None else str(raw)
            requests.append(
                PackageRequest(
                    package=parse_package_name(str(name), default_registry),
                    kind=kind,
                    constraint=parse_constraint(raw_text),
                    raw=raw_text,
                )
            )

    console = config.get("console") or {}
    launch_cmd = console.get("launch_cmd") if isinstance(console, Mapping) else None

    try:
        return ResolutionContext(
            game_version=str(game_version).strip(),
            loader_version=str(loader_version).strip(),
            requests=tuple(requests),
            loader=str(versions.get("loader") or Constants.DEFAULT_LOADER),
            side=side,
            project=str(config.get("name") or ""),
            tool_version=versions.get("mc_cli_version"),
            launch_cmd=tuple(str(part) for part in launch_cmd or ()),
        )
    except ValueError as exc:
        raise ConstraintSyntaxError(str(exc)) from exc


def game_support_from_strings(items) -> GameVersionSupport:
    """Build a GameVersionSupport from exact versions and range strings.

    "*" anywhere in the list makes the support unrestricted.
    """
    exact = set()
    ranges = []
    for item in items or ():
        text = str(item).strip()
        if not text:
            continue
        if text == "*":
            return GameVersionSupport()
        if _is_plain_version(text):
            exact.add(text)
            continue
        constraint = parse_constraint(text)
        if isinstance(constraint, VersionRange):
            ranges.append(constraint)
        elif isinstance(constraint, ExactVersion):
            exact.add(constraint.version)
        else:
            return GameVersionSupport()
    return GameVersionSupport(versions=frozenset(exact), ranges=tuple(ranges))
