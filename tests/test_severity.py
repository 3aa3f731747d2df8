"""Unit tests for severity normalization across feed vocabularies."""

import unittest

from correlator.services.severity import (
    SEVERITY_ORDER,
    cvss_to_severity,
    estimate_cvss_from_vector,
    normalize_severity,
    severity_rank,
)


class TestNormalizeSeverity(unittest.TestCase):
    """normalize_severity is total: every input maps to one of the four levels."""

    def test_github_moderate_maps_to_medium(self) -> None:
        self.assertEqual(normalize_severity("moderate"), "medium")
        self.assertEqual(normalize_severity("MODERATE"), "medium")

    def test_aliases(self) -> None:
        self.assertEqual(normalize_severity("Important"), "high")
        self.assertEqual(normalize_severity("CRITICAL"), "critical")
        self.assertEqual(normalize_severity("negligible"), "low")
        self.assertEqual(normalize_severity("info"), "low")
        self.assertEqual(normalize_severity("none"), "low")

    def test_unknown_label_falls_back_to_cvss(self) -> None:
        self.assertEqual(normalize_severity("weird", 9.8), "critical")
        self.assertEqual(normalize_severity(None, 7.0), "high")
        self.assertEqual(normalize_severity("", 4.0), "medium")
        self.assertEqual(normalize_severity("  ", 3.9), "low")

    def test_nothing_usable_is_medium(self) -> None:
        self.assertEqual(normalize_severity(None), "medium")
        self.assertEqual(normalize_severity("unknown", None), "medium")

    def test_total_over_vocabularies(self) -> None:
        inputs = [
            "critical", "high", "moderate", "medium", "low", "info", "informational",
            "important", "minor", "unimportant", "UNKNOWN", "", None, "9.1", "p1",
        ]
        for raw in inputs:
            with self.subTest(raw=raw):
                self.assertIn(normalize_severity(raw), SEVERITY_ORDER)


class TestCvss(unittest.TestCase):
    def test_cvss_bands(self) -> None:
        self.assertEqual(cvss_to_severity(10.0), "critical")
        self.assertEqual(cvss_to_severity(8.9), "high")
        self.assertEqual(cvss_to_severity(6.5), "medium")
        self.assertEqual(cvss_to_severity(0.0), "low")

    def test_out_of_range_is_medium(self) -> None:
        self.assertEqual(cvss_to_severity(-1), "medium")
        self.assertEqual(cvss_to_severity(11), "medium")

    def test_vector_estimate(self) -> None:
        score = estimate_cvss_from_vector("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H")
        self.assertEqual(score, 9.0)
        self.assertIsNone(estimate_cvss_from_vector("AV:N/AC:L/Au:N/C:P/I:P/A:P"))
        self.assertIsNone(estimate_cvss_from_vector(None))

    def test_severity_rank_orders_levels(self) -> None:
        self.assertGreater(severity_rank("critical"), severity_rank("high"))
        self.assertGreater(severity_rank("low"), severity_rank("bogus"))


if __name__ == "__main__":
    unittest.main()
