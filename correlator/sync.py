"""
CLI entrypoint for the vulnerability feed sync. Run from cron, e.g.:

  python -m correlator.sync
  python -m correlator.sync --ecosystem npm --ecosystem nvd

Daily: 0 3 * * * cd /path/to/correlator && .venv/bin/python -m correlator.sync
"""

import argparse
import logging
import sys

from correlator.core.config import get_settings
from correlator.core.database import SessionLocal
from correlator.services.feed_sync import ALL_ECOSYSTEMS, FeedSyncService, resolve_ecosystems

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Sync the requested ecosystems (all by default). Exit 1 if any of them failed."""
    parser = argparse.ArgumentParser(description="Mirror OSV and NVD feeds into the local store.")
    parser.add_argument(
        "--ecosystem",
        action="append",
        dest="ecosystems",
        help=f"Ecosystem to sync; repeatable. One of: {', '.join(ALL_ECOSYSTEMS)}",
    )
    args = parser.parse_args(argv)

    try:
        ecosystems = resolve_ecosystems(args.ecosystems)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2

    settings = get_settings()
    try:
        with FeedSyncService(SessionLocal, settings) as service:
            outcomes = service.sync_all(ecosystems)
    except Exception as e:
        logger.exception("Feed sync job failed: %s", e)
        return 1

    for outcome in outcomes:
        logger.info(
            "%s: %s (%s) upserted=%s deleted=%s parse_errors=%s%s",
            outcome.ecosystem,
            outcome.status,
            outcome.mode or "-",
            outcome.records_upserted,
            outcome.records_deleted,
            outcome.parse_errors,
            f" error={outcome.error_message}" if outcome.error_message else "",
        )
    return 1 if any(o.status == "error" for o in outcomes) else 0


if __name__ == "__main__":
    sys.exit(main())
