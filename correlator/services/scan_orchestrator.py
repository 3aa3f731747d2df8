"""
ScanOrchestrator: one platform-wide scan run.

    idle -> running -> completed | failed

A run snapshots every product's components, deduplicates them, matches each
distinct component once on a worker pool, fans the results out to the owning
products and diffs them against the previous completed run. All findings of the
run are committed in one transaction; a failed or timed-out run commits nothing
but its own failed status, so the previous run's findings stay authoritative.

Only one run is active at a time, guarded by a persisted lock. A run still marked
running past its deadline (e.g. after a process restart) is failed and its lock
reclaimed on the next trigger.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from correlator.models import Finding, ProductComponent, ScanRun
from correlator.services.dedup import ComponentKey, DedupResult, deduplicate_components
from correlator.services.errors import ConcurrencyConflict, MatchFailure, RunFailure, RunTimeout
from correlator.services.locks import (
    SCAN_LOCK_NAME,
    acquire_lock,
    clear_lock,
    make_holder,
    release_lock,
)
from correlator.services.matching import MatchingEngine, MatchResult, MatchTimings
from correlator.services.severity import SEVERITY_ORDER
from correlator.services.vuln_store import VulnerabilityStore

if TYPE_CHECKING:
    from correlator.core.config import Settings

logger = logging.getLogger(__name__)

# Triage states a user sets; they survive into later runs by natural key.
CARRIED_STATUSES = frozenset({"mitigated", "dismissed"})

# The lock outlives the run deadline by this much so the run can record its own failure.
_LOCK_GRACE = timedelta(minutes=5)

NaturalKey = tuple[str, str, str, str]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def natural_key(finding: Finding) -> NaturalKey:
    """(product_id, ecosystem, dependency_name, source_id): identity of a finding across runs."""
    return (finding.product_id, finding.ecosystem, finding.dependency_name, finding.source_id)


@dataclass
class ScanStart:
    """Outcome of a trigger: started with a new run id, or already_running with the active one."""

    status: str
    run_id: int | None
    holder: str | None = None


@dataclass
class _MatchOutcome:
    matches: dict[ComponentKey, list[MatchResult]] = field(default_factory=dict)
    failed: set[ComponentKey] = field(default_factory=set)


def latest_completed_run(session: Session, exclude_run_id: int | None = None) -> ScanRun | None:
    stmt = select(ScanRun).where(ScanRun.status == "completed")
    if exclude_run_id is not None:
        stmt = stmt.where(ScanRun.id != exclude_run_id)
    return session.scalars(stmt.order_by(ScanRun.started_at.desc(), ScanRun.id.desc()).limit(1)).first()


def active_run(session: Session) -> ScanRun | None:
    return session.scalars(
        select(ScanRun)
        .where(ScanRun.status == "running")
        .order_by(ScanRun.started_at.desc(), ScanRun.id.desc())
        .limit(1)
    ).first()


def recover_stale_runs(session: Session, now: datetime | None = None) -> int:
    """Fail runs still marked running past their deadline. Does not commit."""
    now = now or datetime.now(timezone.utc)
    result = session.execute(
        update(ScanRun)
        .where(ScanRun.status == "running", ScanRun.deadline_at < now)
        .values(
            status="failed",
            completed_at=now,
            error_message="Run did not finish before its deadline (worker lost)",
        )
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    if count:
        logger.warning("Marked %s stale scan run(s) as failed", count)
    return count


def product_severity_counts(session: Session, run_id: int) -> dict[str, dict[str, int]]:
    """product_id -> {severity: count, "total": count} for one run."""
    rows = session.execute(
        select(Finding.product_id, Finding.severity, func.count(Finding.id))
        .where(Finding.scan_run_id == run_id)
        .group_by(Finding.product_id, Finding.severity)
    ).all()
    result: dict[str, dict[str, int]] = {}
    for product_id, severity, count in rows:
        counts = result.setdefault(product_id, {s: 0 for s in SEVERITY_ORDER} | {"total": 0})
        counts[severity] = counts.get(severity, 0) + count
        counts["total"] += count
    return result


class ScanOrchestrator:
    """Triggers and executes platform scan runs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Settings,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings

    # --- Triggering ---

    def try_start(self, trigger_type: str = "manual", triggered_by: str | None = None) -> ScanStart:
        """
        Take the platform scan lock and create a running ScanRun.

        Returns already_running with the active run id when another run holds the lock.
        """
        now = datetime.now(timezone.utc)
        max_duration = timedelta(seconds=self.settings.SCAN_MAX_DURATION_SECONDS)
        holder = make_holder("scan")
        with self.session_factory() as session:
            if recover_stale_runs(session, now):
                # The lock of a run that died is still leased; free it with the recovery.
                clear_lock(session, SCAN_LOCK_NAME)
            session.commit()
            try:
                acquire_lock(session, SCAN_LOCK_NAME, holder, max_duration + _LOCK_GRACE)
            except ConcurrencyConflict:
                running = active_run(session)
                logger.info(
                    "Scan trigger ignored: run %s is already running",
                    running.id if running else "?",
                )
                return ScanStart(status="already_running", run_id=running.id if running else None)

            run = ScanRun(
                status="running",
                trigger_type=trigger_type,
                triggered_by=triggered_by,
                started_at=now,
                deadline_at=now + max_duration,
                per_source_timing={},
            )
            session.add(run)
            session.commit()
            logger.info("Scan run %s started (trigger=%s by=%s)", run.id, trigger_type, triggered_by)
            return ScanStart(status="started", run_id=run.id, holder=holder)

    def execute(self, run_id: int, holder: str) -> None:
        """Execute a started run and release the scan lock. Failures are recorded on the run."""
        try:
            self._execute(run_id)
        finally:
            with self.session_factory() as session:
                release_lock(session, SCAN_LOCK_NAME, holder)

    def run_scan(self, trigger_type: str = "manual", triggered_by: str | None = None) -> ScanStart:
        """Trigger and execute a run synchronously (CLI and scheduler)."""
        start = self.try_start(trigger_type=trigger_type, triggered_by=triggered_by)
        if start.status == "started":
            self.execute(start.run_id, start.holder)
        return start

    # --- Execution ---

    def _execute(self, run_id: int) -> None:
        started = time.monotonic()
        with self.session_factory() as session:
            run = session.get(ScanRun, run_id)
            if run is None:
                raise RunFailure(f"Scan run {run_id} does not exist")
            deadline = _as_utc(run.deadline_at)

        try:
            dedup = self._snapshot()
            self._check_deadline(deadline)
            timings = MatchTimings()
            outcome = self._match_all(dedup.distinct_components, timings, deadline)
            self._persist(run_id, dedup, outcome, timings, deadline, started)
        except Exception as e:
            failure = e if isinstance(e, RunFailure) else RunFailure(f"Scan failed: {e!s}")
            if isinstance(e, RunFailure):
                logger.error("Scan run %s failed: %s", run_id, failure.message)
            else:
                logger.exception("Scan run %s failed", run_id)
            self._record_failure(run_id, failure.message, started)

    def _check_deadline(self, deadline: datetime) -> None:
        if datetime.now(timezone.utc) >= deadline:
            raise RunTimeout(
                f"Scan exceeded the maximum duration of {self.settings.SCAN_MAX_DURATION_SECONDS}s"
            )

    def _snapshot(self) -> DedupResult:
        """Read every product's current components and deduplicate them."""
        with self.session_factory() as session:
            by_product: dict[str, list[ProductComponent]] = defaultdict(list)
            for component in session.scalars(
                select(ProductComponent).order_by(ProductComponent.product_id, ProductComponent.id)
            ):
                by_product[component.product_id].append(component)
            dedup = deduplicate_components(by_product)
        logger.info(
            "Snapshot: products=%s components=%s distinct=%s",
            len(by_product),
            dedup.total_components,
            len(dedup.distinct_components),
        )
        return dedup

    def _match_one(
        self, key: ComponentKey, timings: MatchTimings, deadline: datetime
    ) -> list[MatchResult]:
        self._check_deadline(deadline)
        try:
            with self.session_factory() as session:
                engine = MatchingEngine(
                    VulnerabilityStore(session),
                    cpe_name_denylist=self.settings.CPE_NAME_DENYLIST,
                    timings=timings,
                )
                return engine.match(key)
        except MatchFailure:
            raise
        except Exception as e:
            raise MatchFailure(tuple(key), f"Matching failed: {e!s}") from e

    def _match_all(
        self,
        components: list[ComponentKey],
        timings: MatchTimings,
        deadline: datetime,
    ) -> _MatchOutcome:
        """Match each distinct component once, in parallel. A component failure is isolated."""
        outcome = _MatchOutcome()
        if not components:
            return outcome
        executor = ThreadPoolExecutor(max_workers=self.settings.MATCH_WORKERS)
        timed_out = False
        try:
            futures = {
                executor.submit(self._match_one, key, timings, deadline): key for key in components
            }
            remaining = (deadline - datetime.now(timezone.utc)).total_seconds()
            done, not_done = wait(futures, timeout=max(remaining, 0))
            timed_out = bool(not_done)
            for future in done:
                key = futures[future]
                error = future.exception()
                if error is None:
                    outcome.matches[key] = future.result()
                elif isinstance(error, RunTimeout):
                    timed_out = True
                elif isinstance(error, MatchFailure):
                    outcome.failed.add(key)
                    logger.warning("Match failure for %s@%s: %s", key.name, key.version, error.message)
                else:
                    raise error
        finally:
            executor.shutdown(wait=not timed_out, cancel_futures=True)
        if timed_out:
            raise RunTimeout(
                f"Scan exceeded the maximum duration of {self.settings.SCAN_MAX_DURATION_SECONDS}s"
            )
        return outcome

    def _persist(
        self,
        run_id: int,
        dedup: DedupResult,
        outcome: _MatchOutcome,
        timings: MatchTimings,
        deadline: datetime,
        started: float,
    ) -> None:
        """Write the run's findings, carry statuses over, close vanished ones and complete the run."""
        with self.session_factory() as session:
            previous_run = latest_completed_run(session, exclude_run_id=run_id)
            previous_rows: list[Finding] = []
            if previous_run is not None:
                previous_rows = list(
                    session.scalars(select(Finding).where(Finding.scan_run_id == previous_run.id))
                )
            previous_status: dict[NaturalKey, Finding] = {}
            for row in previous_rows:
                previous_status.setdefault(natural_key(row), row)

            findings: list[Finding] = []
            for key in dedup.distinct_components:
                for match in outcome.matches.get(key, []):
                    for product_id in dedup.owners[key]:
                        nk = (product_id, key.ecosystem, key.name, match.source_id)
                        prior = previous_status.get(nk)
                        carried = prior is not None and prior.status in CARRIED_STATUSES
                        findings.append(
                            Finding(
                                scan_run_id=run_id,
                                product_id=product_id,
                                dependency_name=key.name,
                                dependency_version=key.version,
                                ecosystem=key.ecosystem,
                                dependency_purl=dedup.purls.get(key),
                                source=match.source,
                                source_id=match.source_id,
                                severity=match.severity,
                                cvss_score=match.cvss_score,
                                title=match.title,
                                fixed_version=match.fixed_version,
                                status=prior.status if carried else "open",
                                status_reason=prior.status_reason if carried else None,
                            )
                        )

            current_keys = {natural_key(f) for f in findings}
            new_count = len(current_keys - set(previous_status))
            # A component whose matching failed yields no findings this run; its earlier
            # findings are not closed since nothing shows they were resolved.
            unmatched = {(p, k.ecosystem, k.name) for k in outcome.failed for p in dedup.owners[k]}
            closed = 0
            for row in previous_rows:
                if row.status == "closed" or natural_key(row) in current_keys:
                    continue
                if (row.product_id, row.ecosystem, row.dependency_name) in unmatched:
                    continue
                row.status = "closed"
                row.updated_at = datetime.now(timezone.utc)
                closed += 1

            severity_counts = {s: 0 for s in SEVERITY_ORDER}
            for f in findings:
                severity_counts[f.severity] = severity_counts.get(f.severity, 0) + 1

            self._check_deadline(deadline)
            session.add_all(findings)

            run = session.get(ScanRun, run_id)
            completed = datetime.now(timezone.utc)
            run.status = "completed"
            run.completed_at = completed
            run.duration_seconds = round(time.monotonic() - started, 3)
            run.total_products = len({p for owners in dedup.owners.values() for p in owners})
            run.total_components = dedup.total_components
            run.total_unique_components = len(dedup.distinct_components)
            run.total_findings = len(findings)
            run.new_findings_count = new_count
            run.critical_count = severity_counts["critical"]
            run.high_count = severity_counts["high"]
            run.medium_count = severity_counts["medium"]
            run.low_count = severity_counts["low"]
            run.match_failures = len(outcome.failed)
            run.per_source_timing = timings.as_dict()
            run.error_message = None
            session.commit()

        logger.info(
            "Scan run %s completed: findings=%s new=%s closed=%s distinct=%s match_failures=%s",
            run_id,
            len(findings),
            new_count,
            closed,
            len(dedup.distinct_components),
            len(outcome.failed),
        )

    def _record_failure(self, run_id: int, message: str, started: float) -> None:
        with self.session_factory() as session:
            run = session.get(ScanRun, run_id)
            if run is None:
                return
            run.status = "failed"
            run.completed_at = datetime.now(timezone.utc)
            run.duration_seconds = round(time.monotonic() - started, 3)
            run.error_message = message
            session.commit()
