"""Tests for the resolution service: results, deadlines and update checks."""

import asyncio

import pytest

from mcresolve.errors import ResolutionTimedOut, Unsatisfiable
from mcresolve.registry import LocalIndexRegistry, LocalLoaderRegistry, RegistrySet
from mcresolve.registry.base import PackageRegistry
from mcresolve.service import ResolutionResult, ResolutionService, UpdateCandidate, resolve_sync
from mcresolve.versioning.models import PackageId
from mcresolve.versioning.parser import context_from_config

SODIUM = PackageId("modrinth", "sodium")

INDEX = {
    "packages": {
        "sodium": {"versions": [
            {"version": "0.5.4", "game_versions": ["1.20.2"], "loaders": ["fabric"]},
            {"version": "0.5.3", "game_versions": ["1.20.1"], "loaders": ["fabric"]},
            {"version": "0.5.2", "game_versions": ["1.20.1"], "loaders": ["fabric"]},
        ]},
        "lithium": {"versions": [
            {"version": "0.11.2", "game_versions": ["1.20.1"], "loaders": ["fabric"],
             "incompatibilities": {"phosphor": "*"}},
        ]},
        "phosphor": {"versions": [{"version": "0.8.1", "game_versions": ["1.20.1"], "loaders": ["fabric"]}]},
    },
    "loaders": {"1.20.1": ["0.15.0"]},
    "installers": ["1.0.0"],
}


def _service():
    registries = RegistrySet([LocalIndexRegistry(INDEX, kind="modrinth")])
    return ResolutionService(registries, LocalLoaderRegistry(INDEX))


def _context(mods, loader="latest"):
    return context_from_config({"versions": {"mc_version": "1.20.1", "fabric_version": loader}, "mods": mods})


class _HangingRegistry(PackageRegistry):
    """Never answers; records whether its fetch was cancelled."""

    kind = "modrinth"

    def __init__(self):
        self.cancelled = False

    async def fetch_versions(self, package):
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    async def fetch_version_detail(self, package, version):
        raise AssertionError("not reached")


class TestResolutionResult:
    """Runs end in exactly one of manifest or error."""

    def test_success(self):
        result = asyncio.run(_service().resolve(_context({"sodium": None})))

        assert result.ok
        assert result.error is None
        assert result.manifest.versions() == {SODIUM: "0.5.3"}
        assert result.manifest.loader.version == "0.15.0"

    def test_failure_is_wrapped(self):
        result = asyncio.run(_service().resolve(_context({"lithium": None, "phosphor": None})))

        assert not result.ok
        assert result.manifest is None
        assert isinstance(result.error, Unsatisfiable)
        with pytest.raises(Unsatisfiable):
            result.unwrap()

    def test_result_holds_exactly_one_outcome(self):
        with pytest.raises(ValueError):
            ResolutionResult()
        with pytest.raises(ValueError):
            ResolutionResult(manifest=object(), error=ResolutionTimedOut(5))

        timed_out = ResolutionResult(error=ResolutionTimedOut(5))
        assert not timed_out.ok
        with pytest.raises(ResolutionTimedOut):
            timed_out.unwrap()

    def test_resolve_or_raise(self):
        with pytest.raises(Unsatisfiable):
            asyncio.run(_service().resolve_or_raise(_context({"lithium": None, "phosphor": None})))

    def test_resolve_sync(self):
        registries = RegistrySet([LocalIndexRegistry(INDEX, kind="modrinth")])

        result = resolve_sync(_context({"sodium": None}), registries, LocalLoaderRegistry(INDEX))

        assert result.manifest.versions() == {SODIUM: "0.5.3"}


class TestDeadline:
    """An overall deadline turns into ResolutionTimedOut."""

    def test_timeout_cancels_outstanding_fetches(self):
        registry = _HangingRegistry()
        service = ResolutionService(RegistrySet([registry]))

        result = asyncio.run(service.resolve(_context({"sodium": None}, loader="0.15.0"), deadline=0.05))

        assert isinstance(result.error, ResolutionTimedOut)
        assert result.error.deadline == 0.05
        assert result.manifest is None
        assert registry.cancelled


class TestCheckForUpdates:
    """Exact pins are compared with the newest compatible version."""

    def test_reports_newer_compatible_version(self):
        context = _context({"sodium": "0.5.2", "lithium": "0.11.2", "phosphor": None})

        updates = asyncio.run(_service().check_for_updates(context))

        assert updates == [UpdateCandidate(SODIUM, "0.5.2", "0.5.3")]

    def test_no_pins_no_updates(self):
        assert asyncio.run(_service().check_for_updates(_context({"sodium": None}))) == []
