"""Tests for version key ordering."""

from mcresolve.versioning.keys import VersionKey


class TestVersionKeyOrdering:
    """Ordering of mod and game version strings."""

    def test_numeric_components_compare_numerically(self):
        assert VersionKey("1.10.0") > VersionKey("1.9.0")

    def test_partial_versions_are_padded(self):
        assert VersionKey("1.20") == VersionKey("1.20.0")

    def test_build_metadata_is_ignored(self):
        assert VersionKey("0.92.0+1.20.1") == VersionKey("0.92.0")

    def test_game_prefix_is_stripped(self):
        """mc1.20.1-0.5.3 style numbers order by the mod part."""
        assert VersionKey("mc1.20.1-0.5.3") == VersionKey("0.5.3")
        assert VersionKey("mc1.20.1-0.5.4") > VersionKey("mc1.20.1-0.5.3")

    def test_leading_v_is_accepted(self):
        assert VersionKey("v2.1.0") == VersionKey("2.1.0")

    def test_prerelease_sorts_before_release(self):
        key = VersionKey("0.6.0-beta.1")
        assert key.prerelease
        assert key < VersionKey("0.6.0")
        assert key > VersionKey("0.5.9")

    def test_fourth_component_breaks_ties(self):
        assert VersionKey("1.2.3.4") > VersionKey("1.2.3")

    def test_unparseable_sorts_below_parseable(self):
        """Garbage versions never outrank real ones and order by raw text."""
        assert not VersionKey("nightly").parsed
        assert VersionKey("nightly") < VersionKey("0.0.1")
        assert VersionKey("alpha-build") < VersionKey("nightly")

    def test_hash_matches_equality(self):
        assert len({VersionKey("1.0"), VersionKey("1.0.0"), VersionKey("1.0.0+7")}) == 1


class TestGameVersionKeys:
    """Game versions: releases order, snapshots do not."""

    def test_release_candidates_precede_release(self):
        assert VersionKey.for_game("1.20.1-rc1") < VersionKey.for_game("1.20.1")

    def test_snapshots_are_unordered(self):
        assert not VersionKey.for_game("23w31a").parsed
        assert VersionKey.for_game("1.20.1").parsed
