"""Parse raw OSV advisories and NVD CVE items into AdvisoryRecord / CveFeedRecord."""

import logging
from collections.abc import Iterator
from typing import Any

from pydantic import ValidationError

from correlator.schemas.feeds import AdvisoryRecord, AffectedRange, CpeMatch, CveFeedRecord
from correlator.services.severity import estimate_cvss_from_vector, normalize_severity

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 4000

# OSV range types whose events are version strings (GIT ranges carry commit hashes).
_VERSION_RANGE_TYPES = frozenset({"SEMVER", "ECOSYSTEM"})

# NVD metric keys in order of preference.
_NVD_V3_METRICS = ("cvssMetricV31", "cvssMetricV30", "cvssMetricV40")


def _str_or_none(value: Any) -> str | None:
    """Return string or None; coerce non-str to str if sensible."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value).strip() or None


def _osv_severity(advisory: dict[str, Any]) -> tuple[str | None, float | None, str | None]:
    """Return (raw label, cvss score, cvss vector) from database_specific or the severity array."""
    db_specific = advisory.get("database_specific") or {}
    label = _str_or_none(db_specific.get("severity")) if isinstance(db_specific, dict) else None
    for entry in advisory.get("severity") or []:
        if not isinstance(entry, dict):
            continue
        if entry.get("type") in ("CVSS_V3", "CVSS_V4") and entry.get("score"):
            vector = str(entry["score"])
            return label, estimate_cvss_from_vector(vector), vector
    return label, None, None


def flatten_osv_events(events: list[dict[str, Any]]) -> list[AffectedRange]:
    """
    Turn an ordered OSV event list into closed intervals.

    Each 'introduced' opens an interval; the next 'fixed' or 'last_affected'
    closes it. An interval still open at the end has no upper bound.
    """
    ranges: list[AffectedRange] = []
    current: AffectedRange | None = None
    for event in events or []:
        if not isinstance(event, dict):
            continue
        if "introduced" in event:
            if current is not None:
                ranges.append(current)
            current = AffectedRange(introduced=_str_or_none(event["introduced"]) or "0")
        elif "fixed" in event:
            if current is None:
                current = AffectedRange(introduced="0")
            current.fixed = _str_or_none(event["fixed"])
            ranges.append(current)
            current = None
        elif "last_affected" in event:
            if current is None:
                current = AffectedRange(introduced="0")
            current.last_affected = _str_or_none(event["last_affected"])
            ranges.append(current)
            current = None
    if current is not None:
        ranges.append(current)
    return ranges


def parse_osv_advisory(advisory: dict[str, Any]) -> list[AdvisoryRecord]:
    """
    Parse one OSV advisory into one AdvisoryRecord per affected (ecosystem, package).
    Affected entries for the same package are merged. Returns [] when nothing is affected.
    """
    advisory_id = _str_or_none(advisory.get("id"))
    affected_list = advisory.get("affected") or []
    if not advisory_id or not affected_list:
        return []

    label, cvss_score, cvss_vector = _osv_severity(advisory)
    severity = normalize_severity(label, cvss_score)
    aliases = [a for a in (advisory.get("aliases") or []) if isinstance(a, str)]
    references = [
        r["url"] for r in (advisory.get("references") or []) if isinstance(r, dict) and r.get("url")
    ]
    source = "github" if advisory_id.startswith("GHSA-") else "osv"

    by_package: dict[tuple[str, str], AdvisoryRecord] = {}
    for affected in affected_list:
        package = (affected or {}).get("package") or {}
        name = _str_or_none(package.get("name"))
        ecosystem = _str_or_none(package.get("ecosystem"))
        if not name or not ecosystem:
            continue
        # OSV qualifies some ecosystems with a release, e.g. 'Debian:11'.
        ecosystem = ecosystem.split(":", 1)[0]

        ranges: list[AffectedRange] = []
        for r in affected.get("ranges") or []:
            if isinstance(r, dict) and r.get("type") in _VERSION_RANGE_TYPES:
                ranges.extend(flatten_osv_events(r.get("events") or []))
        versions = [v for v in (affected.get("versions") or []) if isinstance(v, str)]
        fixed = next((r.fixed for r in ranges if r.fixed), None)

        key = (ecosystem, name)
        existing = by_package.get(key)
        if existing is not None:
            existing.affected_ranges.extend(ranges)
            existing.affected_versions = sorted(set(existing.affected_versions) | set(versions))
            existing.fixed_version = existing.fixed_version or fixed
            continue
        by_package[key] = AdvisoryRecord(
            source=source,
            advisory_id=advisory_id,
            ecosystem=ecosystem,
            package_name=name,
            package_purl=_str_or_none(package.get("purl")),
            aliases=aliases,
            severity=severity,
            cvss_score=cvss_score,
            cvss_vector=cvss_vector,
            summary=_str_or_none(advisory.get("summary")) or advisory_id,
            details=(advisory.get("details") or "")[:MAX_DESCRIPTION_LENGTH],
            affected_ranges=ranges,
            affected_versions=versions,
            fixed_version=fixed,
            references=references,
            published_at=advisory.get("published"),
            modified_at=advisory.get("modified"),
            withdrawn_at=advisory.get("withdrawn"),
        )
    return list(by_package.values())


def _nvd_cvss(metrics: dict[str, Any]) -> tuple[str | None, float | None, str | None]:
    """Return (baseSeverity, baseScore, vectorString), preferring CVSS v3.x over v4 over v2."""
    for key in _NVD_V3_METRICS:
        entries = metrics.get(key) or []
        if entries and isinstance(entries[0], dict):
            data = entries[0].get("cvssData") or {}
            return (
                _str_or_none(data.get("baseSeverity")),
                data.get("baseScore"),
                _str_or_none(data.get("vectorString")),
            )
    v2 = metrics.get("cvssMetricV2") or []
    if v2 and isinstance(v2[0], dict):
        data = v2[0].get("cvssData") or {}
        label = _str_or_none(v2[0].get("baseSeverity")) or _str_or_none(data.get("baseSeverity"))
        return label, data.get("baseScore"), _str_or_none(data.get("vectorString"))
    return None, None, None


def _nvd_cpe_matches(item: dict[str, Any]) -> list[CpeMatch]:
    matches: list[CpeMatch] = []
    for config in item.get("configurations") or []:
        for node in (config or {}).get("nodes") or []:
            for match in (node or {}).get("cpeMatch") or []:
                if not isinstance(match, dict) or not match.get("vulnerable"):
                    continue
                criteria = _str_or_none(match.get("criteria"))
                if not criteria:
                    continue
                matches.append(
                    CpeMatch(
                        criteria=criteria,
                        version_start_including=_str_or_none(match.get("versionStartIncluding")),
                        version_start_excluding=_str_or_none(match.get("versionStartExcluding")),
                        version_end_including=_str_or_none(match.get("versionEndIncluding")),
                        version_end_excluding=_str_or_none(match.get("versionEndExcluding")),
                    )
                )
    return matches


def parse_nvd_item(item: dict[str, Any]) -> CveFeedRecord | None:
    """
    Parse one NVD CVE item (bare, or wrapped as {"cve": {...}} by the NVD API).
    Rejected CVEs and items without an id return None.
    """
    if isinstance(item.get("cve"), dict):
        item = item["cve"]
    cve_id = _str_or_none(item.get("id"))
    if not cve_id or item.get("vulnStatus") == "Rejected":
        return None

    description = next(
        (
            d.get("value") or ""
            for d in item.get("descriptions") or []
            if isinstance(d, dict) and d.get("lang") == "en"
        ),
        "",
    )
    label, score, vector = _nvd_cvss(item.get("metrics") or {})
    try:
        cvss_score = float(score) if score is not None else None
    except (TypeError, ValueError):
        cvss_score = None
    references = [
        r["url"] for r in item.get("references") or [] if isinstance(r, dict) and r.get("url")
    ]
    return CveFeedRecord(
        cve_id=cve_id,
        description=description[:MAX_DESCRIPTION_LENGTH],
        severity=normalize_severity(label, cvss_score),
        cvss_score=cvss_score,
        cvss_vector=vector,
        cpe_matches=_nvd_cpe_matches(item),
        references=references,
        published_at=item.get("published"),
        modified_at=item.get("lastModified"),
        vuln_status=_str_or_none(item.get("vulnStatus")),
    )


def iter_nvd_feed(data: dict[str, Any]) -> Iterator[CveFeedRecord]:
    """
    Yield parsed CVE records from a feed document in either the fkie-cad
    ('cve_items') or NVD API ('vulnerabilities') layout. Unparseable items are skipped.
    """
    items = data.get("cve_items") or data.get("vulnerabilities") or []
    skipped = 0
    for item in items:
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            record = parse_nvd_item(item)
        except ValidationError as e:
            skipped += 1
            logger.debug("Skipping invalid NVD item: %s", e)
            continue
        if record is not None:
            yield record
    if skipped:
        logger.warning("NVD feed: skipped %s malformed items", skipped)
