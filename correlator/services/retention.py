"""Data retention: delete findings of scan runs older than RETENTION_HOURS."""

import logging
from datetime import datetime, timezone, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from correlator.models import Finding, ScanRun
from correlator.services.scan_orchestrator import latest_completed_run

if TYPE_CHECKING:
    from correlator.core.config import Settings

logger = logging.getLogger(__name__)


def run_retention(session: Session, settings: "Settings") -> int:
    """
    Delete findings of finished scan runs that started before now - RETENTION_HOURS.

    The latest completed run is never pruned, so current findings and their triage
    status always survive. Run rows are kept as history. Returns findings deleted.
    Idempotent: safe to run repeatedly.
    """
    if not settings.RETENTION_ENABLED:
        logger.info("Retention is disabled (RETENTION_ENABLED=false); skipping.")
        return 0

    cutoff = datetime.now(timezone.utc) - timedelta(hours=settings.RETENTION_HOURS)
    expired_runs = select(ScanRun.id).where(
        ScanRun.status.in_(("completed", "failed")),
        ScanRun.started_at < cutoff,
    )
    latest = latest_completed_run(session)
    if latest is not None:
        expired_runs = expired_runs.where(ScanRun.id != latest.id)

    result = session.execute(
        delete(Finding)
        .where(Finding.scan_run_id.in_(expired_runs))
        .execution_options(synchronize_session=False)
    )
    deleted_count = result.rowcount or 0
    session.commit()

    if deleted_count > 0:
        logger.info(
            "Retention run: cutoff=%s, findings_deleted=%s",
            cutoff.isoformat(),
            deleted_count,
        )
    return deleted_count
