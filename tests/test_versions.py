"""Unit tests for ecosystem-aware version ordering and range containment."""

import unittest

from correlator.services.versions import (
    compare_versions,
    generic_version_key,
    semver_version_key,
    version_in_cpe_bounds,
    version_in_range,
)


class TestCompareVersions(unittest.TestCase):
    """Generic dotted ordering and PEP 440 for PyPI."""

    def test_numeric_segments_compare_numerically(self) -> None:
        self.assertEqual(compare_versions("4.17.9", "4.17.10"), -1)
        self.assertEqual(compare_versions("10.0.0", "9.9.9"), 1)

    def test_trailing_zeros_are_equal(self) -> None:
        self.assertEqual(compare_versions("1.0", "1.0.0"), 0)
        self.assertEqual(compare_versions("2", "2.0.0.0"), 0)

    def test_pre_release_sorts_before_release(self) -> None:
        self.assertEqual(compare_versions("1.0.0-rc.1", "1.0.0"), -1)
        self.assertEqual(compare_versions("1.0.0-alpha", "1.0.0-beta"), -1)
        self.assertEqual(compare_versions("2.0.0-SNAPSHOT", "2.0.0"), -1)

    def test_post_release_sorts_after_release(self) -> None:
        self.assertEqual(compare_versions("1.0.0-1", "1.0.0"), 1)
        self.assertEqual(compare_versions("1.0.0-1", "1.0.0", "Maven"), 1)
        self.assertEqual(compare_versions("3.2.1-2", "3.2.1", "RubyGems"), 1)
        self.assertEqual(compare_versions("1.0.0.Final", "1.0.0"), 0)

    def test_leading_v_and_build_metadata_ignored(self) -> None:
        self.assertEqual(compare_versions("v1.2.3", "1.2.3"), 0)
        self.assertEqual(compare_versions("1.2.3+build.5", "1.2.3"), 0)

    def test_pypi_uses_pep440(self) -> None:
        self.assertEqual(compare_versions("2.0.0rc1", "2.0.0", "PyPI"), -1)
        self.assertEqual(compare_versions("1.0.post1", "1.0", "PyPI"), 1)
        self.assertEqual(compare_versions("1.0.dev0", "1.0a1", "PyPI"), -1)

    def test_invalid_pep440_falls_back_to_generic(self) -> None:
        self.assertEqual(compare_versions("not-a-version", "not-a-version", "PyPI"), 0)

    def test_generic_key_is_sortable(self) -> None:
        versions = ["1.0.0", "1.0.0-rc.1", "0.9", "1.0.1", "1.0.0-alpha"]
        ordered = sorted(versions, key=generic_version_key)
        self.assertEqual(ordered, ["0.9", "1.0.0-alpha", "1.0.0-rc.1", "1.0.0", "1.0.1"])


class TestSemverOrdering(unittest.TestCase):
    """Hyphen suffixes in SemVer ecosystems are always pre-releases."""

    def test_numeric_suffix_is_pre_release(self) -> None:
        self.assertEqual(compare_versions("1.0.0-1", "1.0.0", "npm"), -1)
        self.assertEqual(compare_versions("2.0.0-0", "2.0.0", "crates.io"), -1)
        self.assertEqual(compare_versions("1.4.0-0", "1.3.9", "NuGet"), 1)

    def test_identifier_precedence(self) -> None:
        ordered = [
            "1.0.0-0",
            "1.0.0-2",
            "1.0.0-10",
            "1.0.0-alpha",
            "1.0.0-alpha.1",
            "1.0.0-alpha.beta",
            "1.0.0-beta.11",
            "1.0.0-rc.1",
            "1.0.0",
        ]
        self.assertEqual(sorted(reversed(ordered), key=semver_version_key), ordered)

    def test_go_pseudo_version_precedes_release(self) -> None:
        self.assertEqual(compare_versions("v0.0.0-20210101000000-abcdef123456", "v0.1.0", "Go"), -1)

    def test_zero_suffix_lower_bound_includes_release(self) -> None:
        self.assertTrue(version_in_range("3.0.0", "3.0.0-0", "3.1.0", None, "npm"))
        self.assertTrue(version_in_range("3.0.0-beta.2", "3.0.0-0", "3.1.0", None, "npm"))
        self.assertFalse(version_in_range("2.9.9", "3.0.0-0", "3.1.0", None, "npm"))

    def test_pre_release_of_fixed_version_is_affected(self) -> None:
        self.assertTrue(version_in_range("2.0.0-0", "1.0.0", "2.0.0", None, "npm"))
        self.assertFalse(version_in_range("2.0.0", "1.0.0", "2.0.0", None, "npm"))


class TestVersionInRange(unittest.TestCase):
    """introduced <= v < fixed, v <= last_affected."""

    def test_lodash_boundaries(self) -> None:
        self.assertTrue(version_in_range("4.17.20", "4.0.0", "4.17.21", None, "npm"))
        self.assertFalse(version_in_range("4.17.21", "4.0.0", "4.17.21", None, "npm"))
        self.assertTrue(version_in_range("4.0.0", "4.0.0", "4.17.21", None, "npm"))
        self.assertFalse(version_in_range("3.10.1", "4.0.0", "4.17.21", None, "npm"))

    def test_zero_introduced_is_unbounded(self) -> None:
        self.assertTrue(version_in_range("0.0.1", "0", "1.0.0", None))
        self.assertTrue(version_in_range("0.0.1", None, "1.0.0", None))

    def test_last_affected_is_inclusive(self) -> None:
        self.assertTrue(version_in_range("2.3.0", "2.0.0", None, "2.3.0"))
        self.assertFalse(version_in_range("2.3.1", "2.0.0", None, "2.3.0"))

    def test_open_range_has_no_upper_bound(self) -> None:
        self.assertTrue(version_in_range("99.0.0", "1.0.0", None, None))


class TestVersionInCpeBounds(unittest.TestCase):
    """Flattened CPE entry evaluation."""

    def test_start_incl_end_excl(self) -> None:
        self.assertTrue(version_in_cpe_bounds("1.5.0", None, "1.0.0", None, None, "2.0.0"))
        self.assertFalse(version_in_cpe_bounds("2.0.0", None, "1.0.0", None, None, "2.0.0"))
        self.assertFalse(version_in_cpe_bounds("0.9.0", None, "1.0.0", None, None, "2.0.0"))
        self.assertTrue(version_in_cpe_bounds("1.0.0", None, "1.0.0", None, None, "2.0.0"))

    def test_start_excl_end_incl(self) -> None:
        self.assertFalse(version_in_cpe_bounds("1.0.0", None, None, "1.0.0", "2.0.0", None))
        self.assertTrue(version_in_cpe_bounds("2.0.0", None, None, "1.0.0", "2.0.0", None))

    def test_exact_version_requires_literal_equality(self) -> None:
        self.assertTrue(version_in_cpe_bounds("4.18.0", "4.18.0", None, None, None, None))
        self.assertFalse(version_in_cpe_bounds("4.18", "4.18.0", None, None, None, None))
        self.assertFalse(version_in_cpe_bounds("4.18.1", "4.18.0", None, None, None, None))

    def test_no_version_information_matches_any_version(self) -> None:
        self.assertTrue(version_in_cpe_bounds("0.0.1", None, None, None, None, None))
        self.assertTrue(version_in_cpe_bounds("123.4", "*", None, None, None, None))


if __name__ == "__main__":
    unittest.main()
