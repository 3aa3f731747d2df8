"""
Scan-run retention job for cron.

Deletes the findings of completed and failed scan runs that started more than
RETENTION_HOURS ago. ScanRun rows stay as history, and the latest completed run is
never pruned, so current findings and their triage status survive every pass.
Exits 0 on success (including when RETENTION_ENABLED is off) and 1 on failure.

  correlator-retention
  0 * * * * cd /srv/correlator && .venv/bin/correlator-retention
"""

import logging
import sys

from correlator.core.config import get_settings
from correlator.core.database import SessionLocal
from correlator.services.retention import run_retention

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    db = SessionLocal()
    try:
        findings_deleted = run_retention(db, settings)
    except Exception as e:
        logger.exception("Scan-run retention failed: %s", e)
        return 1
    finally:
        db.close()
    logger.info(
        "Scan-run retention completed: findings_deleted=%s retention_hours=%s",
        findings_deleted,
        settings.RETENTION_HOURS,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
