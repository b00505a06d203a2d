"""Backtracking resolution over a lazily discovered dependency graph.

The engine walks a work queue of packages. Each package with at least
one workable option becomes a ``Decision`` on an explicit stack that
remembers the options, the option currently tried and a snapshot of the
search state taken before it was tried. A dead end restores the snapshot
of the newest decision and moves it to its next option; an exhausted
decision is popped and its parent advances instead.

Candidates failing the game version, loader or side filter are dropped
once per run and never looked at again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..common.logging_utils import Timer, extra_context, is_debug_enabled
from ..errors import NoCompatibleVersion, PackageNotFound, RegistryError, Unsatisfiable
from ..registry.base import LoaderRegistry
from ..versioning.cache import MetadataCache
from ..versioning.constraints import (
    GLOBAL_ORIGIN,
    ConstraintOrigin,
    ConstraintSet,
    ExactVersion,
    OriginKind,
    TaggedConstraint,
    VersionConstraint,
    build_initial_constraints,
)
from ..versioning.models import ArtifactKind, PackageId, ResolutionContext, VersionSpec
from ..versioning.parser import parse_constraint
from .compat import rejection_reason
from .manifest import LoaderPin, ManifestBuilder, Provenance, ResolvedManifest
from .policy import CandidatePolicy, NewestFirstPolicy
from .report import ConflictEntry, ConflictReason, ConflictReport

logger = logging.getLogger(__name__)

# How many surviving versions a conflict message lists.
_LISTED_VERSIONS = 5


@dataclass
class SearchState:
    """Mutable search state; copied whenever a decision is taken."""

    assignment: Dict[PackageId, VersionSpec]
    constraints: ConstraintSet
    queue: List[PackageId]
    kinds: Dict[PackageId, ArtifactKind]
    parents: Dict[PackageId, PackageId] = field(default_factory=dict)

    def copy(self) -> "SearchState":
        return SearchState(
            assignment=dict(self.assignment),
            constraints=self.constraints.copy(),
            queue=list(self.queue),
            kinds=dict(self.kinds),
            parents=dict(self.parents),
        )

    def known(self, package: PackageId) -> bool:
        return package in self.assignment or package in self.queue


@dataclass
class Decision:
    """One entry of the backtracking log."""

    package: PackageId
    options: Tuple[VersionSpec, ...]
    saved: SearchState = field(repr=False)
    index: int = -1
    chosen: Optional[VersionSpec] = None


class _Run:
    """Per-run bookkeeping: state, decision stack, pruning memo and report."""

    def __init__(self, context: ResolutionContext, loader: LoaderPin, constraints: ConstraintSet):
        self.context = context
        self.loader = loader
        self.state = SearchState(
            assignment={},
            constraints=constraints,
            queue=list(context.requested),
            kinds={request.package: request.kind for request in context.requests},
        )
        self.stack: List[Decision] = []
        self.report = ConflictReport()
        self.viable: Dict[Tuple[PackageId, ArtifactKind], Tuple[VersionSpec, ...]] = {}
        self.rejected: Dict[Tuple[PackageId, ArtifactKind], Dict[str, str]] = {}
        self.trace: List[Tuple[str, str]] = []

    def chain(self) -> Tuple[str, ...]:
        return tuple(d.chosen.ref() for d in self.stack if d.chosen is not None)

    def path_to(self, package: PackageId) -> Tuple[PackageId, ...]:
        """Packages whose dependencies introduced ``package``, outermost first."""
        path: List[PackageId] = []
        seen = {package}
        current = self.state.parents.get(package)
        while current is not None and current not in seen:
            path.append(current)
            seen.add(current)
            current = self.state.parents.get(current)
        return tuple(reversed(path))

    def global_constraints(self) -> Tuple[TaggedConstraint, ...]:
        constraints = self.state.constraints
        return (constraints.game_version, constraints.loader_version)


class ResolutionEngine:
    """Resolves a ResolutionContext into a ResolvedManifest."""

    def __init__(
        self,
        cache: MetadataCache,
        loader_registry: Optional[LoaderRegistry] = None,
        policy: Optional[CandidatePolicy] = None,
        builder: Optional[ManifestBuilder] = None,
    ):
        """Initialize the engine.

        Args:
            cache: Run-scoped metadata cache; the engine's only source of metadata.
            loader_registry: Source of loader builds. Without one the loader
                version in the context must be an exact pin.
            policy: Candidate ordering; newest first when omitted.
            builder: Manifest builder; the default one when omitted.
        """
        self._cache = cache
        self._loader_registry = loader_registry
        self._policy = policy or NewestFirstPolicy()
        self._builder = builder or ManifestBuilder()
        self._last_run: Optional[_Run] = None

    @property
    def last_trace(self) -> Tuple[Tuple[str, str], ...]:
        """("try" | "reject" | "exhausted", subject) events of the latest run."""
        return tuple(self._last_run.trace) if self._last_run else ()

    async def resolve(self, context: ResolutionContext) -> ResolvedManifest:
        """Run the search for ``context``.

        Raises:
            NoCompatibleVersion: the loader or a requested package has no
                usable version in the target environment.
            Unsatisfiable: every combination of candidates was exhausted.
            RegistryError: a registry failed for a package the search needed.
        """
        logger.info(
            "Resolving %d package(s) for Minecraft %s",
            len(context.requests),
            context.game_version,
            extra=extra_context(event="resolve_start", component="engine", project=context.project or None),
        )
        loader_constraint = parse_constraint(context.loader_version)
        with Timer() as timer:
            loader, _ = await asyncio.gather(
                self.resolve_loader(context, loader_constraint), self._cache.prefetch(context.requested)
            )
            run = _Run(context, loader, build_initial_constraints(context, ExactVersion(loader.version)))
            self._last_run = run
            self._check_requested(run)
            await self._search(run)
            manifest = self._builder.build(run.state.assignment, self._provenance(run))
        logger.info(
            "Resolved %d package(s) with %s %s",
            len(manifest),
            loader.name,
            loader.version,
            extra=extra_context(
                event="resolve_finish",
                component="engine",
                outcome="success",
                duration_ms=timer.duration_ms(),
            ),
        )
        return manifest

    async def resolve_loader(
        self, context: ResolutionContext, constraint: Optional[VersionConstraint] = None
    ) -> LoaderPin:
        """Pick the concrete loader build for the context's game version."""
        if constraint is None:
            constraint = parse_constraint(context.loader_version)
        subject = PackageId("loader", context.loader)
        tagged = (TaggedConstraint(constraint, GLOBAL_ORIGIN),)

        if self._loader_registry is None:
            if isinstance(constraint, ExactVersion):
                return LoaderPin(context.loader, constraint.version, context.game_version)
            report = ConflictReport()
            report.add(ConflictEntry(
                subject,
                ConflictReason.NO_COMPATIBLE_VERSION,
                constraints=tagged,
                detail="no loader registry configured to pick a version",
            ))
            raise NoCompatibleVersion(f"Cannot choose a {context.loader} loader version", report)

        available = await self._loader_registry.fetch_loader_versions(context.game_version)
        chosen = self._policy.pick_loader(available, constraint)
        if chosen is None:
            if available:
                detail = f"no build matches {constraint.describe()} for Minecraft {context.game_version}"
            else:
                detail = f"no build supports Minecraft {context.game_version}"
            report = ConflictReport()
            report.add(ConflictEntry(subject, ConflictReason.NO_COMPATIBLE_VERSION, constraints=tagged, detail=detail))
            raise NoCompatibleVersion(f"No compatible {context.loader} loader: {detail}", report)

        installer = None
        try:
            installers = await self._loader_registry.fetch_installer_versions()
        except RegistryError as exc:
            logger.warning(
                "Installer versions unavailable; manifest omits the installer: %s",
                exc,
                extra=extra_context(event="loader_installer", outcome="unavailable", loader=context.loader),
            )
        else:
            installer = next((i for i in installers if i.stable), installers[0] if installers else None)
        jar_url = None
        if installer is not None:
            jar_url = self._loader_registry.server_jar_url(
                context.game_version, chosen.version, installer.version
            )
        logger.debug("Using %s loader %s", context.loader, chosen.version)
        return LoaderPin(
            name=context.loader,
            version=chosen.version,
            game_version=context.game_version,
            installer_version=installer.version if installer else None,
            server_jar_url=jar_url,
        )

    def _viable(self, run: _Run, package: PackageId, kind: ArtifactKind) -> Tuple[VersionSpec, ...]:
        """Candidates of ``package`` usable in the target environment, computed once."""
        memo_key = (package, kind)
        cached = run.viable.get(memo_key)
        if cached is not None:
            return cached
        candidates = self._cache.peek(package)
        if candidates is None:
            raise RuntimeError(f"{package} must be fetched before pruning")
        kept: List[VersionSpec] = []
        rejected: Dict[str, str] = {}
        for spec in candidates:
            reason = rejection_reason(
                spec,
                kind,
                game_version=run.context.game_version,
                loader=run.loader.name,
                loader_version=run.loader.version,
                side=run.context.side,
            )
            if reason is None:
                kept.append(spec)
            else:
                rejected[spec.version] = reason
                run.trace.append(("reject", spec.ref()))
        if rejected and is_debug_enabled(logger):
            logger.debug(
                "Pruned %d of %d versions of %s",
                len(rejected),
                len(candidates),
                package,
                extra=extra_context(event="prune", component="engine", target=str(package)),
            )
        run.viable[memo_key] = tuple(kept)
        run.rejected[memo_key] = rejected
        return run.viable[memo_key]

    def _rejection_summary(self, run: _Run, package: PackageId, kind: ArtifactKind) -> str:
        rejected = run.rejected.get((package, kind)) or {}
        if not rejected:
            return "the registry lists no versions"
        newest = next(iter(rejected))
        return f"all {len(rejected)} version(s) rejected; newest {newest} {rejected[newest]}"

    def _check_requested(self, run: _Run) -> None:
        """Report every requested package that cannot be satisfied at all."""
        for request in run.context.requests:
            viable = self._viable(run, request.package, request.kind)
            if any(request.constraint.matches(spec.version) for spec in viable):
                continue
            if viable:
                detail = (
                    f"no compatible version matches {request.constraint.describe()}; "
                    f"compatible: {', '.join(s.version for s in viable[:_LISTED_VERSIONS])}"
                )
            else:
                detail = self._rejection_summary(run, request.package, request.kind)
            run.report.add(ConflictEntry(
                request.package,
                ConflictReason.NO_COMPATIBLE_VERSION,
                constraints=run.global_constraints() + run.state.constraints.of(request.package),
                detail=detail,
            ))
        if run.report:
            names = ", ".join(str(p) for p in run.report.packages())
            logger.warning("No compatible version for %s", names)
            raise NoCompatibleVersion(f"No compatible version for {names}", run.report)

    async def _search(self, run: _Run) -> None:
        while True:
            package = self._next(run)
            if package is None:
                return
            await self._fetch(run, [package])
            options = self._options(run, package)
            if options:
                run.stack.append(Decision(package, options, run.state.copy()))
            else:
                self._explain_dead_end(run, package)
            if not await self._advance(run):
                names = ", ".join(str(p) for p in run.report.packages())
                logger.warning("Resolution failed; conflicting packages: %s", names)
                raise Unsatisfiable(f"No consistent set of versions exists ({names})", run.report)

    @staticmethod
    def _next(run: _Run) -> Optional[PackageId]:
        queue = run.state.queue
        while queue:
            package = queue.pop(0)
            if package not in run.state.assignment:
                return package
        return None

    def _options(self, run: _Run, package: PackageId) -> Tuple[VersionSpec, ...]:
        state = run.state
        constraint = state.constraints.effective(package)
        viable = self._viable(run, package, state.kinds[package])
        allowed = [
            spec for spec in viable
            if constraint.matches(spec.version) and self._blocker(state, spec) is None
        ]
        return tuple(self._policy.order(package, allowed, constraint))

    @staticmethod
    def _blocker(state: SearchState, spec: VersionSpec) -> Optional[VersionSpec]:
        """An assigned package that declares ``spec`` incompatible, if any."""
        for other in state.assignment.values():
            for inc in other.incompatibilities:
                if inc.matches(spec):
                    return other
        return None

    async def _advance(self, run: _Run) -> bool:
        """Move the newest decision to its next workable option.

        Exhausted decisions are popped. Returns False once the stack is empty.
        """
        while run.stack:
            decision = run.stack[-1]
            decision.index += 1
            if decision.index >= len(decision.options):
                run.stack.pop()
                run.trace.append(("exhausted", str(decision.package)))
                if is_debug_enabled(logger):
                    logger.debug(
                        "Backtracking past %s",
                        decision.package,
                        extra=extra_context(event="backtrack", component="engine", target=str(decision.package)),
                    )
                continue
            run.state = decision.saved.copy()
            candidate = await self._complete(run, decision.options[decision.index])
            decision.chosen = candidate
            run.trace.append(("try", candidate.ref()))
            if await self._apply(run, decision.package, candidate):
                return True
        return False

    async def _complete(self, run: _Run, spec: VersionSpec) -> VersionSpec:
        if spec.complete:
            return spec
        try:
            return await self._cache.get_detail(spec.package, spec.version_id or spec.version)
        except PackageNotFound as exc:
            raise exc.with_chain(run.path_to(spec.package)) from exc

    async def _fetch(self, run: _Run, packages: Sequence[PackageId]) -> None:
        try:
            await self._cache.prefetch(packages)
        except PackageNotFound as exc:
            if exc.package is None:
                raise
            raise exc.with_chain(run.path_to(exc.package)) from exc

    async def _apply(self, run: _Run, package: PackageId, candidate: VersionSpec) -> bool:
        """Tentatively assign ``candidate``; False (with a report entry) on conflict."""
        state = run.state
        kind = state.kinds[package]

        if not candidate.complete or candidate not in self._viable(run, package, kind):
            # Detail responses can disagree with the listing they came from.
            reason = rejection_reason(
                candidate,
                kind,
                game_version=run.context.game_version,
                loader=run.loader.name,
                loader_version=run.loader.version,
                side=run.context.side,
            )
            if reason:
                run.trace.append(("reject", candidate.ref()))
                self._conflict(run, ConflictEntry(
                    package,
                    ConflictReason.NO_COMPATIBLE_VERSION,
                    chain=run.chain(),
                    detail=f"{candidate.ref()} {reason}",
                ))
                return False

        for inc in candidate.incompatibilities:
            other = state.assignment.get(inc.package)
            if other is not None and inc.matches(other):
                self._conflict(run, ConflictEntry(
                    other.package,
                    ConflictReason.INCOMPATIBLE,
                    culprit=package,
                    culprit_version=candidate.version,
                    chain=run.chain(),
                    detail=f"declared incompatible with {inc.package} {inc.constraint.describe()}",
                ))
                return False
        blocker = self._blocker(state, candidate)
        if blocker is not None:
            self._conflict(run, ConflictEntry(
                package,
                ConflictReason.INCOMPATIBLE,
                culprit=blocker.package,
                culprit_version=blocker.version,
                chain=run.chain(),
                detail=f"{blocker.ref()} declares {candidate.ref()} incompatible",
            ))
            return False

        state.assignment[package] = candidate
        origin = ConstraintOrigin(OriginKind.DEPENDENCY, package, candidate.version)
        discovered: List[PackageId] = []
        for dep in candidate.dependencies:
            if dep.package == package:
                continue
            narrowed = state.constraints.add(dep.package, TaggedConstraint(dep.constraint, origin))
            if not narrowed:
                self._conflict(run, ConflictEntry(
                    dep.package,
                    ConflictReason.CONSTRAINT_CONFLICT,
                    constraints=state.constraints.of(dep.package),
                    culprit=package,
                    culprit_version=candidate.version,
                    chain=run.chain(),
                    detail=narrowed.describe(),
                ))
                return False
            chosen = state.assignment.get(dep.package)
            if chosen is not None:
                if not narrowed.matches(chosen.version):
                    self._conflict(run, ConflictEntry(
                        dep.package,
                        ConflictReason.NO_MATCHING_CANDIDATE,
                        constraints=state.constraints.of(dep.package),
                        culprit=package,
                        culprit_version=candidate.version,
                        chain=run.chain(),
                        detail=f"{chosen.ref()} is already chosen",
                    ))
                    return False
            elif not state.known(dep.package):
                state.kinds.setdefault(dep.package, kind)
                state.parents.setdefault(dep.package, package)
                state.queue.append(dep.package)
                discovered.append(dep.package)

        if discovered:
            await self._fetch(run, discovered)
        if is_debug_enabled(logger):
            logger.debug(
                "Assigned %s",
                candidate.ref(),
                extra=extra_context(event="assign", component="engine", target=candidate.ref()),
            )
        return True

    def _explain_dead_end(self, run: _Run, package: PackageId) -> None:
        state = run.state
        kind = state.kinds[package]
        constraint = state.constraints.effective(package)
        constraints = state.constraints.of(package)
        viable = self._viable(run, package, kind)
        matching = [spec for spec in viable if constraint.matches(spec.version)]

        if not viable:
            self._conflict(run, ConflictEntry(
                package,
                ConflictReason.NO_COMPATIBLE_VERSION,
                constraints=run.global_constraints() + constraints,
                chain=run.chain(),
                detail=self._rejection_summary(run, package, kind),
            ))
        elif not matching:
            self._conflict(run, ConflictEntry(
                package,
                ConflictReason.NO_MATCHING_CANDIDATE,
                constraints=constraints,
                chain=run.chain(),
                detail="compatible: " + ", ".join(s.version for s in viable[:_LISTED_VERSIONS]),
            ))
        else:
            for spec in matching:
                blocker = self._blocker(state, spec)
                if blocker is None:
                    continue
                self._conflict(run, ConflictEntry(
                    package,
                    ConflictReason.INCOMPATIBLE,
                    culprit=blocker.package,
                    culprit_version=blocker.version,
                    chain=run.chain(),
                    detail=f"{blocker.ref()} declares it incompatible",
                ))

    @staticmethod
    def _conflict(run: _Run, entry: ConflictEntry) -> None:
        if run.report.add(entry) and is_debug_enabled(logger):
            logger.debug(
                "Conflict on %s: %s",
                entry.package,
                entry.reason.value,
                extra=extra_context(event="conflict", component="engine", target=str(entry.package)),
            )

    def _provenance(self, run: _Run) -> Provenance:
        state = run.state
        assigned = list(state.assignment)
        fetched = {}
        for package in assigned:
            candidates = self._cache.peek(package)
            if candidates is not None:
                fetched[package] = candidates.fetched_at
        return Provenance(
            project=run.context.project,
            game_version=run.context.game_version,
            loader=run.loader,
            kinds={p: state.kinds[p] for p in assigned},
            constraints={p: state.constraints.of(p) for p in assigned},
            effective={p: state.constraints.effective(p) for p in assigned},
            fetched_at=fetched,
            side=run.context.side,
            launch_cmd=run.context.launch_cmd,
            policy=self._policy.name,
        )
