"""
MatchingEngine: find every vulnerability record whose affected range contains a
component's version.

Two sources are consulted per component:
  - advisory: package advisories keyed by (ecosystem, package_name)
  - cpe: the flattened CPE index, restricted to the ecosystem's target software

Results are merged and deduplicated by source_id; an advisory that aliases a CVE
suppresses the CPE result for the same CVE.
"""

import logging
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from correlator.models import Advisory, CpeIndexEntry
from correlator.services.cpe import cpe_product_name, target_software_for
from correlator.services.dedup import ComponentKey
from correlator.services.errors import MatchFailure
from correlator.services.severity import normalize_severity
from correlator.services.versions import version_in_cpe_bounds, version_in_range
from correlator.services.vuln_store import VulnerabilityStore

logger = logging.getLogger(__name__)

SOURCE_ADVISORY = "advisory"
SOURCE_CPE = "cpe"

_MAX_TITLE_LENGTH = 500


@dataclass(frozen=True)
class MatchResult:
    """One vulnerability affecting one distinct component."""

    source: str
    source_id: str
    severity: str
    fixed_version: str | None
    cvss_score: float | None
    title: str


class MatchTimings:
    """Per-source elapsed time and result counts, safe to share between worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, float]] = {}

    def add(self, source: str, elapsed_seconds: float, results: int) -> None:
        with self._lock:
            entry = self._data.setdefault(source, {"seconds": 0.0, "results": 0})
            entry["seconds"] += elapsed_seconds
            entry["results"] += results

    def as_dict(self) -> dict[str, dict[str, Any]]:
        """{source: {"duration_ms": int, "findings": int}} for ScanRun.per_source_timing."""
        with self._lock:
            return {
                source: {
                    "duration_ms": int(round(entry["seconds"] * 1000)),
                    "findings": int(entry["results"]),
                }
                for source, entry in self._data.items()
            }


def advisory_affects(advisory: Advisory, version: str) -> bool:
    """True if version is listed explicitly or falls in any affected range."""
    if version in (advisory.affected_versions or []):
        return True
    for r in advisory.affected_ranges or []:
        if version_in_range(
            version,
            r.get("introduced"),
            r.get("fixed"),
            r.get("last_affected"),
            advisory.ecosystem,
        ):
            return True
    return False


def _cpe_entry_affects(entry: CpeIndexEntry, version: str, ecosystem: str) -> bool:
    return version_in_cpe_bounds(
        version,
        entry.version_exact,
        entry.version_start_incl,
        entry.version_start_excl,
        entry.version_end_incl,
        entry.version_end_excl,
        ecosystem,
    )


def _truncate(text: str | None, fallback: str) -> str:
    text = (text or "").strip()
    if not text:
        return fallback
    return text[:_MAX_TITLE_LENGTH]


class MatchingEngine:
    """Matches one distinct component at a time against a VulnerabilityStore."""

    def __init__(
        self,
        store: VulnerabilityStore,
        cpe_name_denylist: Iterable[str] = (),
        timings: MatchTimings | None = None,
    ) -> None:
        self.store = store
        self.cpe_name_denylist = frozenset(n.strip().lower() for n in cpe_name_denylist)
        self.timings = timings if timings is not None else MatchTimings()

    def match_advisories(self, component: ComponentKey) -> list[MatchResult]:
        """Advisory results for a component; withdrawn advisories are never returned."""
        results, _ = self._match_advisories(component)
        return results

    def _match_advisories(self, component: ComponentKey) -> tuple[list[MatchResult], set[str]]:
        started = time.perf_counter()
        results: list[MatchResult] = []
        aliases: set[str] = set()
        for advisory in self.store.query_advisories(component.ecosystem, component.name):
            if not advisory_affects(advisory, component.version):
                continue
            aliases.update(advisory.aliases or [])
            results.append(
                MatchResult(
                    source=SOURCE_ADVISORY,
                    source_id=advisory.advisory_id,
                    severity=normalize_severity(advisory.severity, advisory.cvss_score),
                    fixed_version=advisory.fixed_version,
                    cvss_score=advisory.cvss_score,
                    title=_truncate(advisory.summary, advisory.advisory_id),
                )
            )
        self.timings.add(SOURCE_ADVISORY, time.perf_counter() - started, len(results))
        return results, aliases

    def is_cpe_denylisted(self, name: str, ecosystem: str) -> bool:
        product = cpe_product_name(name, ecosystem)
        return product in self.cpe_name_denylist or name.strip().lower() in self.cpe_name_denylist

    def match_cpe(self, component: ComponentKey) -> list[MatchResult]:
        """
        CVE results through the CPE index. Only the ecosystem's canonical target
        software is queried; denylisted names and ecosystems without a target
        mapping produce nothing.
        """
        targets = target_software_for(component.ecosystem)
        if not targets or self.is_cpe_denylisted(component.name, component.ecosystem):
            return []
        started = time.perf_counter()
        product = cpe_product_name(component.name, component.ecosystem)
        hits: dict[str, CpeIndexEntry] = {}
        for entry in self.store.query_cpe_candidates(product, targets):
            if entry.cve_id in hits:
                continue
            if _cpe_entry_affects(entry, component.version, component.ecosystem):
                hits[entry.cve_id] = entry

        records = self.store.get_cve_records(hits)
        results: list[MatchResult] = []
        for cve_id, entry in sorted(hits.items()):
            record = records.get(cve_id)
            if record is None:
                continue
            results.append(
                MatchResult(
                    source=SOURCE_CPE,
                    source_id=cve_id,
                    severity=normalize_severity(record.severity, record.cvss_score),
                    fixed_version=entry.version_end_excl,
                    cvss_score=record.cvss_score,
                    title=_truncate(record.description, cve_id),
                )
            )
        self.timings.add(SOURCE_CPE, time.perf_counter() - started, len(results))
        return results

    def match(self, component: ComponentKey) -> list[MatchResult]:
        """
        All results for one component, deduplicated by source_id. Raises MatchFailure
        if either source fails.
        """
        try:
            advisory_results, aliases = self._match_advisories(component)
            suppressed = {r.source_id for r in advisory_results} | aliases
            cpe_results = [
                r for r in self.match_cpe(component) if r.source_id not in suppressed
            ]
        except MatchFailure:
            raise
        except Exception as e:
            logger.exception(
                "Matching failed for %s@%s (%s)", component.name, component.version, component.ecosystem
            )
            raise MatchFailure(tuple(component), f"Matching failed: {e!s}") from e

        merged: dict[str, MatchResult] = {}
        for result in advisory_results + cpe_results:
            merged.setdefault(result.source_id, result)
        return list(merged.values())
