"""Run orchestration: one cache per run, deadlines and discriminated results."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .constants import Constants
from .errors import ResolutionError, ResolutionTimedOut
from .registry import FabricMetaRegistry, ModrinthRegistry, RegistrySet
from .registry.base import LoaderRegistry
from .resolver.compat import rejection_reason
from .resolver.engine import ResolutionEngine
from .resolver.manifest import ResolvedManifest
from .resolver.policy import CandidatePolicy, NewestFirstPolicy
from .versioning.cache import MetadataCache
from .versioning.constraints import ExactVersion, LatestCompatible
from .versioning.keys import VersionKey
from .versioning.models import PackageId, ResolutionContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of a run: a manifest or the terminal error, never both."""

    manifest: Optional[ResolvedManifest] = None
    error: Optional[ResolutionError] = None

    def __post_init__(self) -> None:
        if (self.manifest is None) == (self.error is None):
            raise ValueError("ResolutionResult needs exactly one of manifest or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> ResolvedManifest:
        if self.manifest is None:
            raise self.error or ValueError("ResolutionResult carries no manifest")
        return self.manifest


@dataclass(frozen=True)
class UpdateCandidate:
    """A pinned package with a newer compatible version available."""

    package: PackageId
    pinned: str
    latest: str


def default_registries() -> Tuple[RegistrySet, LoaderRegistry]:
    """Modrinth for packages and Fabric meta for loaders, each with its own HTTP session."""
    return RegistrySet([ModrinthRegistry()]), FabricMetaRegistry()


class ResolutionService:
    """Entry point for resolution runs against a set of registries."""

    def __init__(
        self,
        registries: RegistrySet,
        loader_registry: Optional[LoaderRegistry] = None,
        policy: Optional[CandidatePolicy] = None,
    ):
        self._registries = registries
        self._loader_registry = loader_registry
        self._policy = policy or NewestFirstPolicy()

    def _engine(self, cache: MetadataCache) -> ResolutionEngine:
        return ResolutionEngine(cache, self._loader_registry, self._policy)

    async def resolve(self, context: ResolutionContext, deadline: Optional[float] = None) -> ResolutionResult:
        """Resolve ``context`` within an optional overall deadline (seconds).

        The run's cache is closed afterwards whatever the outcome, cancelling
        any registry fetch still in flight.
        """
        limit = deadline if deadline is not None else Constants.RUN_DEADLINE_SEC
        cache = MetadataCache(self._registries)
        engine = self._engine(cache)
        try:
            if limit:
                manifest = await asyncio.wait_for(engine.resolve(context), timeout=limit)
            else:
                manifest = await engine.resolve(context)
        except asyncio.TimeoutError:
            logger.error("Resolution timed out after %s seconds", limit)
            return ResolutionResult(error=ResolutionTimedOut(limit))
        except ResolutionError as exc:
            logger.info("Resolution failed (%s): %s", type(exc).__name__, exc)
            return ResolutionResult(error=exc)
        finally:
            await cache.close()
        return ResolutionResult(manifest=manifest)

    async def resolve_or_raise(
        self, context: ResolutionContext, deadline: Optional[float] = None
    ) -> ResolvedManifest:
        """Like ``resolve`` but raises the terminal error instead of wrapping it."""
        return (await self.resolve(context, deadline)).unwrap()

    async def check_for_updates(self, context: ResolutionContext) -> List[UpdateCandidate]:
        """Report exact pins that are older than the newest compatible version."""
        pinned = [r for r in context.requests if isinstance(r.constraint, ExactVersion)]
        if not pinned:
            return []
        cache = MetadataCache(self._registries)
        try:
            loader = await self._engine(cache).resolve_loader(context)
            refreshed = await asyncio.gather(*(cache.refresh(r.package) for r in pinned))
        finally:
            await cache.close()

        updates: List[UpdateCandidate] = []
        for request, candidates in zip(pinned, refreshed):
            compatible = [
                spec for spec in candidates
                if rejection_reason(
                    spec,
                    request.kind,
                    game_version=context.game_version,
                    loader=loader.name,
                    loader_version=loader.version,
                    side=context.side,
                ) is None
            ]
            ordered = self._policy.order(request.package, compatible, LatestCompatible())
            if not ordered:
                continue
            current = request.constraint.version
            if ordered[0].key > VersionKey(current):
                updates.append(UpdateCandidate(request.package, current, ordered[0].version))
        logger.info("%d of %d pinned package(s) have updates", len(updates), len(pinned))
        return updates


def resolve_sync(
    context: ResolutionContext,
    registries: Optional[RegistrySet] = None,
    loader_registry: Optional[LoaderRegistry] = None,
    policy: Optional[CandidatePolicy] = None,
    deadline: Optional[float] = None,
) -> ResolutionResult:
    """Run a resolution from synchronous code.

    Without ``registries`` the public Modrinth and Fabric meta services are
    used and closed when the run ends.
    """

    async def _run() -> ResolutionResult:
        owned = registries is None
        if owned:
            regs, loaders = default_registries()
        else:
            regs, loaders = registries, loader_registry
        try:
            return await ResolutionService(regs, loaders, policy).resolve(context, deadline)
        finally:
            if owned:
                await regs.close()
                await loaders.close()

    return asyncio.run(_run())
