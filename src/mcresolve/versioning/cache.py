"""Run-scoped metadata cache with request coalescing.

The cache is the only shared mutable state of a run. Each package is
fetched at most once: concurrent callers for the same key await the same
pending task instead of issuing another registry call. Failed fetches are
not memoized, so a later ``get`` retries the registry. ``refresh`` starts a
new generation for the package: it never joins a fetch that was already in
flight, and results of such older fetches are not stored.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Hashable, Iterable, Optional, Tuple

from ..common.logging_utils import Timer, extra_context, is_debug_enabled
from ..registry.base import RegistrySet
from .models import CandidateSet, PackageId, VersionSpec, sort_candidates

logger = logging.getLogger(__name__)

DetailKey = Tuple[PackageId, str]


class MetadataCache:
    """Memoized CandidateSets for one resolution run (or an explicit session)."""

    def __init__(self, registries: RegistrySet):
        self._registries = registries
        self._entries: Dict[PackageId, CandidateSet] = {}
        self._details: Dict[DetailKey, VersionSpec] = {}
        self._pending: Dict[Hashable, "asyncio.Future"] = {}
        self._generations: Dict[PackageId, int] = {}
        self.upstream_fetches = 0

    def __contains__(self, package: object) -> bool:
        return package in self._entries

    def peek(self, package: PackageId) -> Optional[CandidateSet]:
        """Return the cached CandidateSet without fetching."""
        return self._entries.get(package)

    async def get(self, package: PackageId) -> CandidateSet:
        """Return the CandidateSet of ``package``, fetching it on first access."""
        cached = self._entries.get(package)
        if cached is not None:
            return cached
        generation = self._generations.get(package, 0)
        return await self._coalesce(
            ("versions", package, generation), lambda: self._fetch(package, generation)
        )

    async def get_detail(self, package: PackageId, version: str) -> VersionSpec:
        """Return a complete VersionSpec, asking the detail endpoint if needed."""
        key = (package, version)
        cached = self._details.get(key)
        if cached is not None:
            return cached
        candidates = await self.get(package)
        listed = candidates.find(version)
        if listed is not None and listed.complete:
            return listed
        generation = self._generations.get(package, 0)
        return await self._coalesce(
            ("detail", package, version, generation),
            lambda: self._fetch_detail(package, version, generation),
        )

    async def prefetch(self, packages: Iterable[PackageId]) -> None:
        """Fetch several packages concurrently."""
        unique = [p for p in dict.fromkeys(packages) if p not in self._entries]
        if unique:
            await asyncio.gather(*(self.get(p) for p in unique))

    async def refresh(self, package: PackageId) -> CandidateSet:
        """Drop everything cached for ``package`` and fetch it again."""
        self._generations[package] = self._generations.get(package, 0) + 1
        self._entries.pop(package, None)
        for key in [k for k in self._details if k[0] == package]:
            del self._details[key]
        logger.debug("Cache refresh for %s", package)
        return await self.get(package)

    def clear(self) -> None:
        """Discard all cached entries; pending fetches keep running."""
        self._entries.clear()
        self._details.clear()

    async def close(self) -> None:
        """Cancel outstanding fetches and wait for them to unwind."""
        pending = list(self._pending.values())
        self._pending.clear()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _coalesce(self, key: Hashable, factory) -> object:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda done, k=key: self._settle(k, done))
        elif is_debug_enabled(logger):
            logger.debug(
                "Coalesced registry fetch",
                extra=extra_context(event="cache_coalesce", component="metadata_cache", target=str(key)),
            )
        # Shielded so one cancelled waiter does not cancel the fetch shared with others.
        return await asyncio.shield(task)

    def _settle(self, key: Hashable, task: "asyncio.Future") -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled():
            task.exception()  # mark retrieved; waiters re-raise it themselves

    def _current(self, package: PackageId, generation: int) -> bool:
        return self._generations.get(package, 0) == generation

    async def _fetch(self, package: PackageId, generation: int) -> CandidateSet:
        registry = self._registries.for_package(package)
        self.upstream_fetches += 1
        with Timer() as timer:
            versions = await registry.fetch_versions(package)
        candidates = CandidateSet(
            package=package,
            versions=sort_candidates(versions),
            fetched_at=datetime.now(timezone.utc),
        )
        if self._current(package, generation):
            self._entries[package] = candidates
        logger.debug(
            "Fetched %d versions of %s",
            len(candidates),
            package,
            extra=extra_context(
                event="cache_fill",
                component="metadata_cache",
                outcome="success",
                duration_ms=timer.duration_ms(),
            ),
        )
        return candidates

    async def _fetch_detail(self, package: PackageId, version: str, generation: int) -> VersionSpec:
        registry = self._registries.for_package(package)
        self.upstream_fetches += 1
        spec = await registry.fetch_version_detail(package, version)
        if self._current(package, generation):
            self._details[(package, version)] = spec
        return spec
