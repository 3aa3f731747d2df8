"""
FeedSyncService: mirror OSV advisories and NVD CVE records into the VulnerabilityStore.

Each ecosystem syncs under its own persisted lock and in its own transaction. A
failure rolls that ecosystem back, records the error on its SyncStatus row and
leaves the previously synced data served; other ecosystems are unaffected.

A full sync (OSV all.zip, NVD yearly feeds) runs when no modification marker is
recorded or the last full sync is older than FULL_SYNC_INTERVAL_DAYS, and deletes
rows it did not see. Otherwise the sync is incremental (OSV modified_id.csv plus
per-advisory fetches, NVD CVE-Modified and CVE-Recent).
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from correlator.models import Advisory, SyncStatus
from correlator.schemas.feeds import AdvisoryRecord, CveFeedRecord
from correlator.services.errors import ConcurrencyConflict, IndexRebuildFailure, SyncFailure
from correlator.services.feed_clients import FeedFetchError, NvdFeedClient, OsvFeedClient
from correlator.services.feed_parsers import iter_nvd_feed, parse_osv_advisory
from correlator.services.locks import acquire_lock, make_holder, release_lock, sync_lock_name
from correlator.services.vuln_store import VulnerabilityStore

if TYPE_CHECKING:
    from correlator.core.config import Settings

logger = logging.getLogger(__name__)

OSV_ECOSYSTEMS: tuple[str, ...] = (
    "npm",
    "PyPI",
    "Maven",
    "Go",
    "NuGet",
    "crates.io",
    "Packagist",
    "RubyGems",
)
NVD_ECOSYSTEM = "nvd"
ALL_ECOSYSTEMS: tuple[str, ...] = OSV_ECOSYSTEMS + (NVD_ECOSYSTEM,)

NVD_INCREMENTAL_FEEDS = ("CVE-Modified", "CVE-Recent")

# Upper bound on one ecosystem sync; an expired lease can be taken over.
SYNC_LOCK_TTL = timedelta(hours=6)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _later(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


@dataclass
class SyncOutcome:
    """Result of one ecosystem sync attempt."""

    ecosystem: str
    status: str  # completed | error | already_running
    mode: str | None = None  # full | incremental
    records_upserted: int = 0
    records_deleted: int = 0
    parse_errors: int = 0
    duration_seconds: float = 0.0
    error_message: str | None = None


@dataclass
class _SyncStats:
    upserted: int = 0
    deleted: int = 0
    parse_errors: int = 0
    marker: datetime | None = None


def resolve_ecosystems(ecosystems: Iterable[str] | None) -> list[str]:
    """
    Map requested names (case-insensitive) to their canonical spelling; None means all.
    Raises ValueError for unknown ecosystems.
    """
    if ecosystems is None:
        return list(ALL_ECOSYSTEMS)
    by_lower = {e.lower(): e for e in ALL_ECOSYSTEMS}
    resolved: list[str] = []
    unknown: list[str] = []
    for name in ecosystems:
        canonical = by_lower.get((name or "").strip().lower())
        if canonical is None:
            unknown.append(name)
        elif canonical not in resolved:
            resolved.append(canonical)
    if unknown:
        raise ValueError(f"Unknown ecosystems: {', '.join(unknown)}")
    return resolved


class FeedSyncService:
    """Runs feed syncs. Owns its HTTP clients unless they are injected; call close() when done."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Settings,
        osv_client: OsvFeedClient | None = None,
        nvd_client: NvdFeedClient | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self._owns_clients = osv_client is None and nvd_client is None
        self.osv = osv_client or OsvFeedClient.from_settings(settings)
        self.nvd = nvd_client or NvdFeedClient.from_settings(settings)

    def close(self) -> None:
        if self._owns_clients:
            self.osv.close()
            self.nvd.close()

    def __enter__(self) -> FeedSyncService:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # --- Locking ---

    def try_start(self, ecosystem: str) -> str | None:
        """Take the ecosystem's sync lock. Returns the holder token, or None if already running."""
        holder = make_holder(f"sync-{ecosystem}")
        with self.session_factory() as session:
            try:
                acquire_lock(session, sync_lock_name(ecosystem), holder, SYNC_LOCK_TTL)
            except ConcurrencyConflict as e:
                logger.info("Sync for %s already running (holder=%s)", ecosystem, e.holder)
                return None
        return holder

    def run_started(self, ecosystem: str, holder: str) -> SyncOutcome:
        """Run a sync whose lock was taken by try_start, releasing the lock afterwards."""
        try:
            return self._sync(ecosystem)
        finally:
            with self.session_factory() as session:
                release_lock(session, sync_lock_name(ecosystem), holder)

    def sync_ecosystem(self, ecosystem: str) -> SyncOutcome:
        """Sync one ecosystem, or report already_running when another sync holds its lock."""
        holder = self.try_start(ecosystem)
        if holder is None:
            return SyncOutcome(ecosystem=ecosystem, status="already_running")
        return self.run_started(ecosystem, holder)

    def sync_all(self, ecosystems: Iterable[str] | None = None) -> list[SyncOutcome]:
        """Sync each ecosystem in turn; a failure in one never stops the others."""
        started = time.monotonic()
        outcomes = [self.sync_ecosystem(eco) for eco in resolve_ecosystems(ecosystems)]
        failed = [o.ecosystem for o in outcomes if o.status == "error"]
        logger.info(
            "Feed sync finished in %.1fs: ecosystems=%s failed=%s",
            time.monotonic() - started,
            len(outcomes),
            failed or "none",
        )
        return outcomes

    # --- Sync ---

    def _status_row(self, session: Session, ecosystem: str) -> SyncStatus:
        row = session.get(SyncStatus, ecosystem)
        if row is None:
            row = SyncStatus(ecosystem=ecosystem, status="never", advisory_count=0, package_count=0)
            session.add(row)
        return row

    def needs_full_sync(self, status: SyncStatus, now: datetime) -> bool:
        if status.last_modified_marker is None or status.last_full_sync_at is None:
            return True
        age = now - _as_utc(status.last_full_sync_at)
        return age >= timedelta(days=self.settings.FULL_SYNC_INTERVAL_DAYS)

    def _sync(self, ecosystem: str) -> SyncOutcome:
        started = time.monotonic()
        with self.session_factory() as session:
            status = self._status_row(session, ecosystem)
            status.status = "running"
            status.updated_at = datetime.now(timezone.utc)
            session.commit()

            now = datetime.now(timezone.utc)
            full = self.needs_full_sync(status, now)
            mode = "full" if full else "incremental"
            batch_id = uuid.uuid4().hex
            store = VulnerabilityStore(session, batch_size=self.settings.UPSERT_BATCH_SIZE)
            logger.info("%s: starting %s sync (batch=%s)", ecosystem, mode, batch_id)
            try:
                if ecosystem == NVD_ECOSYSTEM:
                    stats = self._sync_nvd(store, full, batch_id)
                    record_count, package_count = store.cve_count(), 0
                else:
                    marker = _as_utc(status.last_modified_marker)
                    stats = self._sync_osv(store, ecosystem, full, marker, batch_id)
                    record_count, package_count = store.advisory_counts(ecosystem)

                duration = time.monotonic() - started
                finished = datetime.now(timezone.utc)
                status.status = "completed"
                status.last_sync_at = finished
                if full:
                    status.last_full_sync_at = finished
                status.last_modified_marker = _later(_as_utc(status.last_modified_marker), stats.marker)
                status.advisory_count = record_count
                status.package_count = package_count
                status.duration_seconds = round(duration, 2)
                status.error_message = None
                status.updated_at = finished
                session.commit()
            except Exception as e:
                session.rollback()
                failure = e if isinstance(e, SyncFailure) else SyncFailure(ecosystem, str(e))
                duration = time.monotonic() - started
                if isinstance(e, SyncFailure):
                    logger.error("Sync failed: %s", failure.message)
                else:
                    logger.exception("Sync failed for %s", ecosystem)
                self._record_failure(session, ecosystem, failure.message, duration)
                return SyncOutcome(
                    ecosystem=ecosystem,
                    status="error",
                    mode=mode,
                    duration_seconds=round(duration, 2),
                    error_message=failure.message,
                )

        logger.info(
            "%s: %s sync done in %.1fs: upserted=%s deleted=%s parse_errors=%s total=%s",
            ecosystem,
            mode,
            duration,
            stats.upserted,
            stats.deleted,
            stats.parse_errors,
            record_count,
        )
        return SyncOutcome(
            ecosystem=ecosystem,
            status="completed",
            mode=mode,
            records_upserted=stats.upserted,
            records_deleted=stats.deleted,
            parse_errors=stats.parse_errors,
            duration_seconds=round(duration, 2),
        )

    def _record_failure(self, session: Session, ecosystem: str, message: str, duration: float) -> None:
        status = self._status_row(session, ecosystem)
        status.status = "error"
        status.error_message = message
        status.duration_seconds = round(duration, 2)
        status.updated_at = datetime.now(timezone.utc)
        session.commit()

    # --- OSV ---

    def _parse_osv_payload(
        self, ecosystem: str, payload: bytes | dict[str, Any], stats: _SyncStats
    ) -> list[AdvisoryRecord]:
        try:
            data = json.loads(payload) if isinstance(payload, (bytes, str)) else payload
            if not isinstance(data, dict):
                raise ValueError("advisory document is not an object")
            records = parse_osv_advisory(data)
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            stats.parse_errors += 1
            logger.debug("%s: skipping unparseable advisory: %s", ecosystem, e)
            return []
        records = [r for r in records if r.ecosystem == ecosystem]
        for r in records:
            stats.marker = _later(stats.marker, r.modified_at)
        return records

    def _sync_osv(
        self,
        store: VulnerabilityStore,
        ecosystem: str,
        full: bool,
        marker: datetime | None,
        batch_id: str,
    ) -> _SyncStats:
        stats = _SyncStats()
        try:
            if full:
                pending: list[AdvisoryRecord] = []
                for _name, payload in self.osv.iter_ecosystem_export(ecosystem):
                    pending.extend(self._parse_osv_payload(ecosystem, payload, stats))
                    if len(pending) >= store.batch_size:
                        stats.upserted += store.upsert_advisories(pending, batch_id)
                        pending = []
                stats.upserted += store.upsert_advisories(pending, batch_id)
                stats.deleted = store.delete_stale_advisories(ecosystem, batch_id)
            else:
                self._sync_osv_incremental(store, ecosystem, marker, batch_id, stats)
        except FeedFetchError as e:
            raise SyncFailure(ecosystem, e.message) from e
        if stats.parse_errors:
            logger.warning("%s: skipped %s unparseable advisories", ecosystem, stats.parse_errors)
        return stats

    def _sync_osv_incremental(
        self,
        store: VulnerabilityStore,
        ecosystem: str,
        marker: datetime,
        batch_id: str,
        stats: _SyncStats,
    ) -> None:
        entries = self.osv.modified_since(ecosystem, marker)
        logger.info("%s: %s advisories modified since %s", ecosystem, len(entries), marker.isoformat())
        if not entries:
            return

        def fetch(advisory_id: str) -> dict[str, Any] | None:
            try:
                return self.osv.fetch_advisory(ecosystem, advisory_id)
            except FeedFetchError as e:
                logger.warning("%s: could not fetch %s: %s", ecosystem, advisory_id, e.message)
                return {}

        ids = [advisory_id for _, advisory_id in entries]
        fetch_failures = 0
        records: list[AdvisoryRecord] = []
        with ThreadPoolExecutor(max_workers=self.settings.OSV_INCREMENTAL_CONCURRENCY) as pool:
            for document in pool.map(fetch, ids):
                if document is None:
                    continue
                if not document:
                    fetch_failures += 1
                    continue
                records.extend(self._parse_osv_payload(ecosystem, document, stats))
        stats.upserted = store.upsert_advisories(records, batch_id)
        if fetch_failures:
            # Keep the old marker so the failed advisories are retried next time.
            stats.parse_errors += fetch_failures
            stats.marker = None
        else:
            stats.marker = max(modified for modified, _ in entries)

    # --- NVD ---

    def _upsert_nvd_feed(
        self, store: VulnerabilityStore, feed_name: str, batch_id: str, stats: _SyncStats
    ) -> None:
        try:
            document = self.nvd.fetch_feed(feed_name)
        except FeedFetchError as e:
            raise SyncFailure(NVD_ECOSYSTEM, f"{feed_name}: {e.message}") from e
        pending: list[CveFeedRecord] = []
        for record in iter_nvd_feed(document):
            stats.marker = _later(stats.marker, record.modified_at)
            pending.append(record)
            if len(pending) >= store.batch_size:
                stats.upserted += store.upsert_cve_records(pending, batch_id)
                pending = []
        stats.upserted += store.upsert_cve_records(pending, batch_id)
        logger.info("NVD: processed %s", feed_name)

    def _sync_nvd(self, store: VulnerabilityStore, full: bool, batch_id: str) -> _SyncStats:
        stats = _SyncStats()
        feeds = [f"CVE-{year}" for year in self.settings.NVD_YEARS] if full else list(NVD_INCREMENTAL_FEEDS)
        for feed_name in feeds:
            self._upsert_nvd_feed(store, feed_name, batch_id, stats)
        if full:
            stats.deleted = store.delete_stale_cve_records(batch_id)
        try:
            store.rebuild_cpe_index()
        except IndexRebuildFailure as e:
            raise SyncFailure(NVD_ECOSYSTEM, e.message) from e
        return stats


def sync_status_summary(session: Session) -> dict[str, Any]:
    """Per-ecosystem sync state (including never-synced ones) and store totals."""
    rows = {row.ecosystem: row for row in session.scalars(select(SyncStatus))}
    store = VulnerabilityStore(session)
    ecosystems = []
    for name in ALL_ECOSYSTEMS:
        row = rows.get(name)
        ecosystems.append(
            {
                "ecosystem": name,
                "status": row.status if row else "never",
                "last_sync_at": _as_utc(row.last_sync_at) if row else None,
                "last_full_sync_at": _as_utc(row.last_full_sync_at) if row else None,
                "advisory_count": row.advisory_count if row else 0,
                "package_count": row.package_count if row else 0,
                "duration_seconds": row.duration_seconds if row else None,
                "error_message": row.error_message if row else None,
            }
        )
    total_advisories = int(session.scalar(select(func.count(Advisory.id))) or 0)
    return {
        "ecosystems": ecosystems,
        "total_advisories": total_advisories,
        "total_cves": store.cve_count(),
        "cpe_index_entries": store.cpe_index_count(),
    }
