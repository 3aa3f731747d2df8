"""
CLI entrypoint for a platform scan. Runs the scan in-process and waits for it:

  python -m correlator.scan
"""

import argparse
import logging
import sys

from correlator.core.config import get_settings
from correlator.core.database import SessionLocal
from correlator.models import ScanRun
from correlator.services.scan_orchestrator import ScanOrchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Run one scan. Exit 0 on completion, 1 on failure, 3 when another run is active."""
    parser = argparse.ArgumentParser(description="Run a platform-wide vulnerability scan.")
    parser.add_argument("--triggered-by", default="cli", help="Recorded on the scan run")
    args = parser.parse_args(argv)

    orchestrator = ScanOrchestrator(SessionLocal, get_settings())
    try:
        start = orchestrator.run_scan(trigger_type="manual", triggered_by=args.triggered_by)
    except Exception as e:
        logger.exception("Scan job failed: %s", e)
        return 1

    if start.status == "already_running":
        logger.warning("A scan is already running (run_id=%s)", start.run_id)
        return 3

    db = SessionLocal()
    try:
        run = db.get(ScanRun, start.run_id)
        logger.info(
            "Scan run %s %s: findings=%s new=%s components=%s distinct=%s%s",
            run.id,
            run.status,
            run.total_findings,
            run.new_findings_count,
            run.total_components,
            run.total_unique_components,
            f" error={run.error_message}" if run.error_message else "",
        )
        return 0 if run.status == "completed" else 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
