"""Unit tests for platform-wide component deduplication."""

import unittest
from types import SimpleNamespace

from correlator.services.dedup import ComponentKey, component_key, deduplicate_components


def _c(name: str, version: str, ecosystem: str = "npm", purl: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(name=name, version=version, ecosystem=ecosystem, purl=purl)


class TestDeduplicateComponents(unittest.TestCase):
    def test_shared_component_listed_once(self) -> None:
        result = deduplicate_components(
            {
                "prod-a": [_c("express", "4.18.0"), _c("lodash", "4.17.20")],
                "prod-b": [_c("express", "4.18.0")],
                "prod-c": [_c("express", "4.18.0"), _c("express", "4.19.2")],
            }
        )
        express = ComponentKey("express", "npm", "4.18.0")
        self.assertEqual(len(result.distinct_components), 3)
        self.assertEqual(result.owners[express], ["prod-a", "prod-b", "prod-c"])
        self.assertEqual(result.total_components, 5)

    def test_ecosystem_is_case_insensitive_and_name_trimmed(self) -> None:
        result = deduplicate_components(
            {
                "p1": [_c("requests ", "2.31.0", "pypi")],
                "p2": [_c("requests", "2.31.0", "PyPI")],
            }
        )
        self.assertEqual(result.distinct_components, [ComponentKey("requests", "PyPI", "2.31.0")])

    def test_duplicate_within_product_owned_once(self) -> None:
        result = deduplicate_components({"p1": [_c("lodash", "4.17.20"), _c("lodash", "4.17.20")]})
        key = ComponentKey("lodash", "npm", "4.17.20")
        self.assertEqual(result.owners[key], ["p1"])
        self.assertEqual(result.total_components, 2)

    def test_blank_entries_dropped(self) -> None:
        result = deduplicate_components({"p1": [_c("", "1.0.0"), _c("left-pad", "  ")]})
        self.assertEqual(result.distinct_components, [])
        self.assertEqual(result.total_components, 0)

    def test_first_purl_kept(self) -> None:
        result = deduplicate_components(
            {
                "p1": [_c("lodash", "4.17.20")],
                "p2": [_c("lodash", "4.17.20", purl="pkg:npm/lodash@4.17.20")],
            }
        )
        self.assertEqual(
            result.purls[ComponentKey("lodash", "npm", "4.17.20")], "pkg:npm/lodash@4.17.20"
        )

    def test_component_key(self) -> None:
        self.assertEqual(component_key(" gin ", "golang", "1.9.1"), ComponentKey("gin", "Go", "1.9.1"))
        self.assertIsNone(component_key("gin", "", "1.9.1"))


if __name__ == "__main__":
    unittest.main()
