"""Tests for the backtracking resolution engine."""

import asyncio

import pytest

from mcresolve.errors import NoCompatibleVersion, PackageNotFound, RegistryUnavailable, Unsatisfiable
from mcresolve.registry import LocalIndexRegistry, LocalLoaderRegistry, RegistrySet
from mcresolve.resolver import ConflictReason, NewestFirstPolicy, verify_manifest
from mcresolve.resolver.engine import ResolutionEngine
from mcresolve.resolver.policy import CandidatePolicy
from mcresolve.versioning.cache import MetadataCache
from mcresolve.versioning.models import PackageId, candidate_order_key
from mcresolve.versioning.parser import context_from_config


def _pkg(slug):
    return PackageId("modrinth", slug)


def _version(version, games=("1.20.1",), loaders=("fabric",), **extra):
    item = {"version": version, "game_versions": list(games), "loaders": list(loaders)}
    item.update(extra)
    return item


def _config(mods=None, game="1.20.1", loader="0.15.0", **sections):
    config = {"name": "test-server", "versions": {"mc_version": game, "fabric_version": loader}}
    config["mods"] = mods or {}
    config.update(sections)
    return config


def _engine(packages, loaders=None, policy=None, omit_details=False):
    registry = LocalIndexRegistry(
        {"packages": packages}, kind="modrinth", omit_details_in_listing=omit_details
    )
    loader_registry = LocalLoaderRegistry(loaders) if loaders is not None else None
    cache = MetadataCache(RegistrySet([registry]))
    return ResolutionEngine(cache, loader_registry, policy), cache


class _InstallerOutage(LocalLoaderRegistry):
    """Loader registry whose installer endpoint keeps failing."""

    async def fetch_installer_versions(self):
        raise RegistryUnavailable("installer endpoint down", registry="fabric-meta")


def _resolve(packages, config, side=None, **kwargs):
    engine, cache = _engine(packages, **kwargs)
    context = context_from_config(config, side=side)
    manifest = asyncio.run(engine.resolve(context))
    return manifest, engine, cache


class TestGameVersionPruning:
    """Candidates for other game versions never take part in the search."""

    def test_latest_compatible_skips_newer_unsupported_version(self):
        """0.5.4 only supports 1.20.2, so 0.5.3 is chosen for 1.20.1."""
        packages = {
            "sodium": {"versions": [
                _version("0.5.3", games=["1.20.1"]),
                _version("0.5.4", games=["1.20.2"]),
            ]},
        }
        manifest, engine, _ = _resolve(packages, _config({"sodium": "latest"}))

        assert manifest.versions() == {_pkg("sodium"): "0.5.3"}

    def test_pruned_candidate_is_never_tried(self):
        """A candidate rejected by the environment filter does not appear in the trace."""
        packages = {
            "sodium": {"versions": [
                _version("0.5.3", games=["1.20.1"]),
                _version("0.5.4", games=["1.20.2"]),
            ]},
            "iris": {"versions": [_version("1.6.4", dependencies={"sodium": "*"})]},
        }
        _, engine, _ = _resolve(packages, _config({"iris": None, "sodium": None}))

        trace = engine.last_trace
        assert ("reject", "modrinth:sodium@0.5.4") in trace
        assert ("try", "modrinth:sodium@0.5.4") not in trace
        assert ("try", "modrinth:sodium@0.5.3") in trace

    def test_requested_package_without_compatible_version(self):
        """fabric-api 0.92.0 supports >=1.20.0,<1.21.0 only; 1.19.4 has no candidate."""
        packages = {
            "fabric-api": {"versions": [_version("0.92.0", games=[">=1.20.0,<1.21.0"])]},
        }
        engine, _ = _engine(packages)
        context = context_from_config(_config({"fabric-api": "0.92.0"}, game="1.19.4"))

        with pytest.raises(NoCompatibleVersion) as excinfo:
            asyncio.run(engine.resolve(context))

        assert excinfo.value.packages == (_pkg("fabric-api"),)
        entry = excinfo.value.report.entries[0]
        assert entry.reason is ConflictReason.NO_COMPATIBLE_VERSION
        assert "1.19.4" in entry.detail

    def test_game_range_accepts_matching_release(self):
        """The same range resolves for a game version inside it."""
        packages = {
            "fabric-api": {"versions": [_version("0.92.0", games=[">=1.20.0,<1.21.0"])]},
        }
        manifest, _, _ = _resolve(packages, _config({"fabric-api": "0.92.0"}, game="1.20.4"))

        assert manifest.versions() == {_pkg("fabric-api"): "0.92.0"}

    def test_every_unsatisfiable_request_is_reported(self):
        """All requested packages with no candidate appear, not just the first."""
        packages = {
            "old-a": {"versions": [_version("1.0.0", games=["1.16.5"])]},
            "old-b": {"versions": [_version("2.0.0", games=["1.18.2"])]},
            "fine": {"versions": [_version("3.0.0")]},
            "pinned": {"versions": [_version("1.1.0"), _version("1.0.0", games=["1.19"])]},
        }
        engine, _ = _engine(packages)
        config = _config({"old-a": None, "fine": None, "old-b": None, "pinned": "1.0.0"})

        with pytest.raises(NoCompatibleVersion) as excinfo:
            asyncio.run(engine.resolve(context_from_config(config)))

        assert set(excinfo.value.packages) == {_pkg("old-a"), _pkg("old-b"), _pkg("pinned")}

    def test_loader_tag_depends_on_artifact_kind(self):
        """Datapacks must list "datapack"; a fabric-only build is not a datapack."""
        packages = {
            "terralith": {"versions": [
                _version("2.4.8", loaders=["fabric"]),
                _version("2.4.7", loaders=["datapack"]),
            ]},
            "fresh-textures": {"versions": [_version("1.0.0", loaders=["minecraft"])]},
        }
        config = _config(datapacks={"terralith": None}, resourcepacks={"fresh-textures": None})
        manifest, _, _ = _resolve(packages, config)

        assert manifest[_pkg("terralith")].version == "2.4.7"
        assert manifest[_pkg("terralith")].kind.value == "datapack"
        assert manifest[_pkg("fresh-textures")].version == "1.0.0"

    def test_loader_version_range_is_checked_for_mods(self):
        """A build needing a newer loader than the pinned one is pruned."""
        packages = {
            "lithium": {"versions": [
                _version("0.12.0", loader_version=">=0.15.0"),
                _version("0.11.2", loader_version=">=0.14.21"),
            ]},
        }
        manifest, _, _ = _resolve(packages, _config({"lithium": None}, loader="0.14.22"))

        assert manifest.versions() == {_pkg("lithium"): "0.11.2"}

    def test_server_side_unsupported_is_pruned(self):
        """Client-only projects cannot be resolved for a server."""
        packages = {
            "sodium": {"client_side": "required", "server_side": "unsupported",
                       "versions": [_version("0.5.3")]},
        }
        engine, _ = _engine(packages)
        context = context_from_config(_config({"sodium": None}), side="server")

        with pytest.raises(NoCompatibleVersion) as excinfo:
            asyncio.run(engine.resolve(context))

        assert "server" in excinfo.value.report.entries[0].detail

    def test_empty_game_and_loader_lists_are_unrestricted(self):
        """Missing facets do not prune anything."""
        packages = {"anything": {"versions": [{"version": "1.0.0"}]}}
        manifest, _, _ = _resolve(packages, _config({"anything": None}))

        assert manifest.versions() == {_pkg("anything"): "1.0.0"}


class TestIncompatibilities:
    """Declared incompatibilities block combinations."""

    PACKAGES = {
        "lithium": {"versions": [_version("0.11.2", incompatibilities={"phosphor": "*"})]},
        "phosphor": {"versions": [_version("0.8.1")]},
    }

    @pytest.mark.parametrize("order", [("lithium", "phosphor"), ("phosphor", "lithium")])
    def test_incompatible_pair_is_unsatisfiable(self, order):
        """Both packages and the incompatibility appear in the report."""
        engine, _ = _engine(self.PACKAGES)
        context = context_from_config(_config({name: None for name in order}))

        with pytest.raises(Unsatisfiable) as excinfo:
            asyncio.run(engine.resolve(context))

        error = excinfo.value
        assert set(error.packages) == {_pkg("lithium"), _pkg("phosphor")}
        incompatible = [e for e in error.report if e.reason is ConflictReason.INCOMPATIBLE]
        assert incompatible
        assert incompatible[0].culprit in (_pkg("lithium"), _pkg("phosphor"))
        assert "lithium" in error.report.describe()

    def test_version_qualified_incompatibility_picks_older_version(self):
        """Only the phosphor versions matching the declaration are excluded."""
        packages = {
            "lithium": {"versions": [_version("0.11.2", incompatibilities={"phosphor": ">=0.8.0"})]},
            "phosphor": {"versions": [_version("0.8.1"), _version("0.7.0")]},
        }
        manifest, _, _ = _resolve(packages, _config({"lithium": None, "phosphor": None}))

        assert manifest.versions() == {_pkg("lithium"): "0.11.2", _pkg("phosphor"): "0.7.0"}
        assert verify_manifest(manifest) == []


class TestDependencyConstraints:
    """Dependency ranges narrow shared packages."""

    def test_shared_dependency_uses_highest_version_in_overlap(self):
        """Two chains narrow the shared library to >=1.5.0,<2.0.0."""
        packages = {
            "mod-a": {"versions": [_version("1.0.0", dependencies={"shared": ">=1.0.0,<2.0.0"})]},
            "mod-b": {"versions": [_version("1.0.0", dependencies={"bridge": None})]},
            "bridge": {"versions": [_version("2.0.0", dependencies={"shared": ">=1.5.0,<3.0.0"})]},
            "shared": {"versions": [
                _version("2.5.0"), _version("1.8.0"), _version("1.5.0"), _version("1.0.0"),
            ]},
        }
        manifest, _, _ = _resolve(packages, _config({"mod-a": None, "mod-b": None}))

        entry = manifest[_pkg("shared")]
        assert entry.version == "1.8.0"
        assert entry.constraint.describe() == ">=1.5.0,<2.0.0"
        origins = {t.origin.describe() for t in entry.justification}
        assert "required by modrinth:mod-a@1.0.0" in origins
        assert "required by modrinth:bridge@2.0.0" in origins
        assert manifest[_pkg("bridge")].kind.value == "mod"

    def test_backtracks_to_older_version_of_earlier_decision(self):
        """mod-a 2.0.0 needs lib>=2 but mod-b needs lib<2, so mod-a falls back to 1.0.0."""
        packages = {
            "mod-a": {"versions": [
                _version("2.0.0", dependencies={"lib": ">=2.0.0"}),
                _version("1.0.0", dependencies={"lib": ">=1.0.0,<2.0.0"}),
            ]},
            "mod-b": {"versions": [_version("1.0.0", dependencies={"lib": "<2.0.0"})]},
            "lib": {"versions": [_version("2.1.0"), _version("1.5.0")]},
        }
        manifest, engine, _ = _resolve(packages, _config({"mod-a": None, "mod-b": None}))

        assert manifest.versions() == {
            _pkg("lib"): "1.5.0",
            _pkg("mod-a"): "1.0.0",
            _pkg("mod-b"): "1.0.0",
        }
        assert ("exhausted", "modrinth:mod-b") in engine.last_trace
        assert verify_manifest(manifest) == []

    def test_conflicting_ranges_report_both_origins(self):
        """Disjoint dependency ranges fail with the constraints and their declarers."""
        packages = {
            "mod-a": {"versions": [_version("1.0.0", dependencies={"lib": ">=2.0.0"})]},
            "mod-b": {"versions": [_version("1.0.0", dependencies={"lib": "<2.0.0"})]},
            "lib": {"versions": [_version("2.1.0"), _version("1.5.0")]},
        }
        engine, _ = _engine(packages)
        context = context_from_config(_config({"mod-a": None, "mod-b": None}))

        with pytest.raises(Unsatisfiable) as excinfo:
            asyncio.run(engine.resolve(context))

        entries = excinfo.value.report.for_package(_pkg("lib"))
        assert entries[0].reason is ConflictReason.CONSTRAINT_CONFLICT
        origins = [t.origin.describe() for t in entries[0].constraints]
        assert "required by modrinth:mod-a@1.0.0" in origins
        assert "required by modrinth:mod-b@1.0.0" in origins

    def test_missing_transitive_package_carries_chain(self):
        """PackageNotFound names the packages that introduced the missing one."""
        packages = {
            "mod-a": {"versions": [_version("1.0.0", dependencies={"middle": None})]},
            "middle": {"versions": [_version("1.0.0", dependencies={"ghost": None})]},
        }
        engine, _ = _engine(packages)
        context = context_from_config(_config({"mod-a": None}))

        with pytest.raises(PackageNotFound) as excinfo:
            asyncio.run(engine.resolve(context))

        assert excinfo.value.package == _pkg("ghost")
        assert excinfo.value.chain == (_pkg("mod-a"), _pkg("middle"))
        assert "required via modrinth:mod-a -> modrinth:middle" in str(excinfo.value)

    def test_missing_requested_package(self):
        """A top-level package the registry does not know has an empty chain."""
        engine, _ = _engine({})
        context = context_from_config(_config({"nope": None}))

        with pytest.raises(PackageNotFound) as excinfo:
            asyncio.run(engine.resolve(context))

        assert excinfo.value.chain == ()

    def test_dependency_cycle_resolves(self):
        """Mutual dependencies settle on one version each."""
        packages = {
            "ping": {"versions": [_version("1.0.0", dependencies={"pong": "^1.0.0"})]},
            "pong": {"versions": [_version("1.2.0", dependencies={"ping": "1.0.0"})]},
        }
        manifest, _, _ = _resolve(packages, _config({"ping": None}))

        assert manifest.versions() == {_pkg("ping"): "1.0.0", _pkg("pong"): "1.2.0"}

    def test_listing_without_dependencies_uses_detail_lookup(self):
        """Incomplete listings are completed through the detail endpoint."""
        packages = {
            "iris": {"versions": [_version("1.6.4", dependencies={"sodium": ">=0.5.0"})]},
            "sodium": {"versions": [_version("0.5.3"), _version("0.4.10")]},
        }
        manifest, _, cache = _resolve(packages, _config({"iris": None}), omit_details=True)

        assert manifest.versions() == {_pkg("iris"): "1.6.4", _pkg("sodium"): "0.5.3"}
        assert manifest[_pkg("iris")].spec.complete
        # two listings plus one detail per chosen version
        assert cache.upstream_fetches == 4


class TestLoaderSelection:
    """Loader version pinning against the loader registry."""

    LOADERS = {
        "loaders": {"1.20.1": ["0.15.1", {"version": "0.15.2", "stable": False}, "0.14.22"]},
        "installers": ["1.0.0"],
    }
    PACKAGES = {"sodium": {"versions": [_version("0.5.3")]}}

    def test_latest_picks_newest_stable_loader(self):
        """Unstable loader builds are skipped for "latest"."""
        manifest, _, _ = _resolve(self.PACKAGES, _config({"sodium": None}, loader="latest"),
                                  loaders=self.LOADERS)

        assert manifest.loader.version == "0.15.1"
        assert manifest.loader.installer_version == "1.0.0"

    def test_exact_pin_may_be_unstable(self):
        """An explicit pin is honoured even for an unstable build."""
        manifest, _, _ = _resolve(self.PACKAGES, _config({"sodium": None}, loader="0.15.2"),
                                  loaders=self.LOADERS)

        assert manifest.loader.version == "0.15.2"

    def test_unknown_loader_version(self):
        """A pin the loader registry does not list is a NoCompatibleVersion."""
        engine, _ = _engine(self.PACKAGES, loaders=self.LOADERS)
        context = context_from_config(_config({"sodium": None}, loader="0.16.0"))

        with pytest.raises(NoCompatibleVersion) as excinfo:
            asyncio.run(engine.resolve(context))

        assert excinfo.value.packages == (PackageId("loader", "fabric"),)

    def test_game_version_without_loader(self):
        """No loader build for the game version fails before the search."""
        engine, _ = _engine(self.PACKAGES, loaders=self.LOADERS)
        context = context_from_config(_config({"sodium": None}, game="1.20.2", loader="latest"))

        with pytest.raises(NoCompatibleVersion) as excinfo:
            asyncio.run(engine.resolve(context))

        assert "1.20.2" in excinfo.value.report.entries[0].detail

    def test_latest_without_loader_registry(self):
        """Without a loader registry only an exact pin can be used."""
        engine, _ = _engine(self.PACKAGES)
        context = context_from_config(_config({"sodium": None}, loader="latest"))

        with pytest.raises(NoCompatibleVersion):
            asyncio.run(engine.resolve(context))

    def test_installer_outage_keeps_loader_pin(self):
        """Installer metadata is optional; a failing installer lookup leaves it unset."""
        registry = LocalIndexRegistry({"packages": self.PACKAGES}, kind="modrinth")
        engine = ResolutionEngine(MetadataCache(RegistrySet([registry])), _InstallerOutage(self.LOADERS))
        context = context_from_config(_config({"sodium": None}, loader="latest"))

        manifest = asyncio.run(engine.resolve(context))

        assert manifest.loader.version == "0.15.1"
        assert manifest.loader.installer_version is None
        assert manifest.loader.server_jar_url is None
        assert manifest.versions() == {_pkg("sodium"): "0.5.3"}


class TestCandidatePolicy:
    """Candidate ordering is delegated to the policy object."""

    PACKAGES = {
        "sodium": {"versions": [
            _version("0.5.3", published="2023-09-20T10:00:00Z"),
            _version("0.6.0-beta.1", published="2023-12-01T10:00:00Z", type="beta"),
        ]},
    }

    def test_default_policy_allows_prereleases(self):
        """Newest first includes beta builds by default."""
        manifest, _, _ = _resolve(self.PACKAGES, _config({"sodium": None}))

        assert manifest.versions() == {_pkg("sodium"): "0.6.0-beta.1"}

    def test_stable_only_policy(self):
        """stable_only skips the beta."""
        manifest, _, _ = _resolve(self.PACKAGES, _config({"sodium": None}),
                                  policy=NewestFirstPolicy(stable_only=True))

        assert manifest.versions() == {_pkg("sodium"): "0.5.3"}
        assert manifest.policy == "newest-first"

    def test_custom_policy_overrides_order(self):
        """A policy subclass changes which candidate is tried first."""

        class OldestFirst(CandidatePolicy):
            name = "oldest-first"

            def order(self, package, candidates, constraint):
                return sorted(candidates, key=candidate_order_key)

        manifest, _, _ = _resolve(self.PACKAGES, _config({"sodium": None}), policy=OldestFirst())

        assert manifest.versions() == {_pkg("sodium"): "0.5.3"}
        assert manifest.policy == "oldest-first"


class TestDeterminism:
    """Identical inputs give identical manifests."""

    def test_two_runs_serialize_identically(self):
        """Fresh caches over the same snapshot produce byte-identical JSON."""
        packages = {
            "fabric-api": {"versions": [
                _version("0.92.0+1.20.1", published="2023-12-01T10:00:00Z"),
                _version("0.91.0+1.20.1", published="2023-11-01T10:00:00Z"),
            ]},
            "lithium": {"versions": [_version("0.11.2", dependencies={"fabric-api": ">=0.90.0"})]},
            "sodium": {"versions": [_version("0.5.3", dependencies={"fabric-api": None})]},
        }
        config = _config({"sodium": None, "lithium": None, "fabric-api": None})

        first, _, _ = _resolve(packages, config)
        second, _, _ = _resolve(packages, config)

        assert first.to_json() == second.to_json()
        assert first.to_json(include_fetch_times=True) != first.to_json()
        assert [str(p) for p in first.packages] == [
            "modrinth:fabric-api", "modrinth:lithium", "modrinth:sodium",
        ]
