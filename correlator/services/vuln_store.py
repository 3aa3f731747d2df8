"""VulnerabilityStore: persisted advisories, CVE records and the flattened CPE index."""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from correlator.models import Advisory, CpeIndexEntry, CpeIndexState, CveRecord
from correlator.schemas.feeds import AdvisoryRecord, CveFeedRecord
from correlator.services.cpe import normalize_package_name, parse_cpe23
from correlator.services.errors import IndexRebuildFailure

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500
_INDEX_STATE_ID = 1

_ADVISORY_KEY = ("advisory_id", "ecosystem", "package_name")


def _dialect_insert(session: Session):
    """Return the dialect's insert() construct, which supports ON CONFLICT DO UPDATE."""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on dialect {name!r}")
    return insert


def _chunks(rows: Sequence[dict[str, Any]], size: int) -> Iterable[Sequence[dict[str, Any]]]:
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


def merge_advisory_records(records: Iterable[AdvisoryRecord]) -> list[AdvisoryRecord]:
    """
    Collapse records sharing (advisory_id, ecosystem, package_name) so one statement
    never updates the same row twice. Ranges and explicit versions are merged; PyPI
    names are stored in their PEP 503 form.
    """
    merged: dict[tuple[str, str, str], AdvisoryRecord] = {}
    for record in records:
        package_name = normalize_package_name(record.package_name, record.ecosystem)
        key = (record.advisory_id, record.ecosystem, package_name)
        existing = merged.get(key)
        if existing is None:
            merged[key] = record.model_copy(update={"package_name": package_name}, deep=True)
            continue
        existing.affected_ranges.extend(record.affected_ranges)
        existing.affected_versions = sorted(
            set(existing.affected_versions) | set(record.affected_versions)
        )
        existing.fixed_version = existing.fixed_version or record.fixed_version
    return list(merged.values())


def _advisory_row(record: AdvisoryRecord, batch_id: str) -> dict[str, Any]:
    return {
        "source": record.source,
        "advisory_id": record.advisory_id,
        "ecosystem": record.ecosystem,
        "package_name": record.package_name,
        "package_purl": record.package_purl,
        "severity": record.severity,
        "cvss_score": record.cvss_score,
        "cvss_vector": record.cvss_vector,
        "summary": record.summary,
        "details": record.details,
        "aliases": list(record.aliases),
        "affected_ranges": [r.model_dump() for r in record.affected_ranges],
        "affected_versions": list(record.affected_versions),
        "fixed_version": record.fixed_version,
        "reference_urls": list(record.references),
        "published_at": record.published_at,
        "modified_at": record.modified_at,
        "withdrawn_at": record.withdrawn_at,
        "sync_batch_id": batch_id,
    }


def _cve_row(record: CveFeedRecord, batch_id: str) -> dict[str, Any]:
    return {
        "cve_id": record.cve_id,
        "description": record.description,
        "severity": record.severity,
        "cvss_score": record.cvss_score,
        "cvss_vector": record.cvss_vector,
        "cpe_matches": [m.model_dump() for m in record.cpe_matches],
        "reference_urls": list(record.references),
        "published_at": record.published_at,
        "modified_at": record.modified_at,
        "vuln_status": record.vuln_status,
        "sync_batch_id": batch_id,
    }


class VulnerabilityStore:
    """
    Repository over the advisory, CVE and CPE index tables for one session.

    Writes are flushed but never committed here; the caller owns the transaction so
    a whole ecosystem sync lands or rolls back as a unit.
    """

    def __init__(self, session: Session, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.session = session
        self.batch_size = batch_size

    # --- Advisories ---

    def upsert_advisory(self, record: AdvisoryRecord, batch_id: str) -> None:
        """Insert or replace one advisory keyed by (advisory_id, ecosystem, package_name)."""
        self.upsert_advisories([record], batch_id)

    def upsert_advisories(self, records: Iterable[AdvisoryRecord], batch_id: str) -> int:
        """Batch upsert; returns the number of distinct rows written."""
        rows = [_advisory_row(r, batch_id) for r in merge_advisory_records(records)]
        if not rows:
            return 0
        insert = _dialect_insert(self.session)
        for chunk in _chunks(rows, self.batch_size):
            stmt = insert(Advisory).values(list(chunk))
            update_cols = {
                col: stmt.excluded[col]
                for col in chunk[0]
                if col not in _ADVISORY_KEY
            }
            update_cols["updated_at"] = func.now()
            stmt = stmt.on_conflict_do_update(index_elements=list(_ADVISORY_KEY), set_=update_cols)
            self.session.execute(stmt)
        return len(rows)

    def delete_stale_advisories(self, ecosystem: str, batch_id: str) -> int:
        """Delete advisories of an ecosystem not written by the given (full) sync batch."""
        result = self.session.execute(
            delete(Advisory)
            .where(Advisory.ecosystem == ecosystem, Advisory.sync_batch_id != batch_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def advisory_counts(self, ecosystem: str) -> tuple[int, int]:
        """Return (advisory rows, distinct package names) for an ecosystem."""
        row = self.session.execute(
            select(
                func.count(Advisory.id),
                func.count(func.distinct(Advisory.package_name)),
            ).where(Advisory.ecosystem == ecosystem)
        ).one()
        return int(row[0] or 0), int(row[1] or 0)

    def query_advisories(self, ecosystem: str, package_name: str) -> list[Advisory]:
        """Non-withdrawn advisories for (ecosystem, package_name); served by the composite index."""
        return list(
            self.session.scalars(
                select(Advisory).where(
                    Advisory.ecosystem == ecosystem,
                    Advisory.package_name == normalize_package_name(package_name, ecosystem),
                    Advisory.withdrawn_at.is_(None),
                )
            )
        )

    # --- CVE records ---

    def upsert_cve_record(self, record: CveFeedRecord, batch_id: str) -> None:
        """Insert or replace one CVE keyed by cve_id."""
        self.upsert_cve_records([record], batch_id)

    def upsert_cve_records(self, records: Iterable[CveFeedRecord], batch_id: str) -> int:
        """Batch upsert; later records for the same cve_id win. Returns distinct rows written."""
        by_id: dict[str, dict[str, Any]] = {}
        for record in records:
            by_id[record.cve_id] = _cve_row(record, batch_id)
        rows = list(by_id.values())
        if not rows:
            return 0
        insert = _dialect_insert(self.session)
        for chunk in _chunks(rows, self.batch_size):
            stmt = insert(CveRecord).values(list(chunk))
            update_cols = {col: stmt.excluded[col] for col in chunk[0] if col != "cve_id"}
            update_cols["updated_at"] = func.now()
            stmt = stmt.on_conflict_do_update(index_elements=["cve_id"], set_=update_cols)
            self.session.execute(stmt)
        return len(rows)

    def delete_stale_cve_records(self, batch_id: str) -> int:
        """Delete CVE records not written by the given (full) sync batch."""
        result = self.session.execute(
            delete(CveRecord)
            .where(CveRecord.sync_batch_id != batch_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def get_cve_records(self, cve_ids: Iterable[str]) -> dict[str, CveRecord]:
        ids = sorted(set(cve_ids))
        if not ids:
            return {}
        rows = self.session.scalars(select(CveRecord).where(CveRecord.cve_id.in_(ids)))
        return {row.cve_id: row for row in rows}

    def cve_count(self) -> int:
        return int(self.session.scalar(select(func.count(CveRecord.cve_id))) or 0)

    # --- CPE index ---

    def _index_state(self) -> CpeIndexState:
        state = self.session.get(CpeIndexState, _INDEX_STATE_ID)
        if state is None:
            state = CpeIndexState(id=_INDEX_STATE_ID, active_generation=0, entry_count=0)
            self.session.add(state)
            self.session.flush()
        return state

    def active_cpe_generation(self) -> int:
        value = self.session.scalar(
            select(CpeIndexState.active_generation).where(CpeIndexState.id == _INDEX_STATE_ID)
        )
        return int(value or 0)

    def cpe_index_count(self) -> int:
        """Entries in the active generation."""
        active = (
            select(CpeIndexState.active_generation)
            .where(CpeIndexState.id == _INDEX_STATE_ID)
            .scalar_subquery()
        )
        return int(
            self.session.scalar(
                select(func.count(CpeIndexEntry.id)).where(CpeIndexEntry.generation == active)
            )
            or 0
        )

    def _iter_cve_matches(self) -> Iterable[tuple[str, list[dict[str, Any]]]]:
        """Keyset-paginate (cve_id, cpe_matches) so the whole table is never loaded at once."""
        last_id = ""
        while True:
            page = self.session.execute(
                select(CveRecord.cve_id, CveRecord.cpe_matches)
                .where(CveRecord.cve_id > last_id)
                .order_by(CveRecord.cve_id)
                .limit(self.batch_size)
            ).all()
            if not page:
                return
            for cve_id, matches in page:
                yield cve_id, matches or []
            last_id = page[-1][0]

    def _build_generation(self, generation: int) -> int:
        count = 0
        pending: list[dict[str, Any]] = []
        for cve_id, matches in self._iter_cve_matches():
            for match in matches:
                parts = parse_cpe23(match.get("criteria", ""))
                if parts is None or not parts.product or not parts.target_sw:
                    continue
                pending.append(
                    {
                        "generation": generation,
                        "cve_id": cve_id,
                        "vendor": parts.vendor,
                        "product": parts.product,
                        "target_sw": parts.target_sw,
                        "version_exact": parts.version if parts.version not in ("*", "") else None,
                        "version_start_incl": match.get("version_start_including"),
                        "version_start_excl": match.get("version_start_excluding"),
                        "version_end_incl": match.get("version_end_including"),
                        "version_end_excl": match.get("version_end_excluding"),
                    }
                )
                if len(pending) >= self.batch_size:
                    self.session.execute(CpeIndexEntry.__table__.insert(), pending)
                    count += len(pending)
                    pending = []
        if pending:
            self.session.execute(CpeIndexEntry.__table__.insert(), pending)
            count += len(pending)
        return count

    def rebuild_cpe_index(self) -> int:
        """
        Rebuild the flattened CPE index from all CVE records.

        Entries are written under a new generation inside a savepoint; the active
        generation pointer is flipped and older generations dropped only after the
        build succeeds. On failure the savepoint is rolled back, the previous index
        stays active, and IndexRebuildFailure is raised. Returns the entry count.
        """
        state = self._index_state()
        previous = state.active_generation
        generation = previous + 1
        savepoint = self.session.begin_nested()
        try:
            count = self._build_generation(generation)
            self.session.execute(
                delete(CpeIndexEntry)
                .where(CpeIndexEntry.generation != generation)
                .execution_options(synchronize_session=False)
            )
            state.active_generation = generation
            state.entry_count = count
            state.rebuilt_at = datetime.now(timezone.utc)
            self.session.flush()
            savepoint.commit()
        except Exception as e:
            savepoint.rollback()
            logger.exception("CPE index rebuild failed; generation %s stays active", previous)
            raise IndexRebuildFailure(f"CPE index rebuild failed: {e!s}") from e
        logger.info("CPE index rebuilt: generation=%s entries=%s", generation, count)
        return count

    def query_cpe_candidates(
        self,
        product: str,
        target_software: str | Iterable[str],
    ) -> list[CpeIndexEntry]:
        """
        Active-generation CPE entries for a product restricted to the given target_sw
        values. Wildcard or empty targets are never queried.
        """
        if isinstance(target_software, str):
            target_software = [target_software]
        targets = sorted({t.lower() for t in target_software if t and t.strip() not in ("*", "-")})
        if not product or not targets:
            return []
        active = (
            select(CpeIndexState.active_generation)
            .where(CpeIndexState.id == _INDEX_STATE_ID)
            .scalar_subquery()
        )
        return list(
            self.session.scalars(
                select(CpeIndexEntry).where(
                    CpeIndexEntry.generation == active,
                    CpeIndexEntry.product == product.lower(),
                    CpeIndexEntry.target_sw.in_(targets),
                )
            )
        )
