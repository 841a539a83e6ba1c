"""
Main Entry Point - Owner Sync

Runs one full synchronization over the configured date range and pipeline,
logs the per-record outcomes and a final summary, and exits with a code that
tells schedulers what happened.
"""

import argparse
import logging
from typing import List, Optional

from pydantic import ValidationError

from .coreutils.config import SyncConfig
from .coreutils.logging import setup_logging
from .orchestration.pipeline import EXIT_ERROR, RunSummary, run_sync

logger = logging.getLogger(__name__)


def log_summary(summary: RunSummary) -> None:
    stats = summary.stats()
    logger.info("=" * 50)
    logger.info(
        f"Processed {stats['records_fetched']} deals across {stats['pages']} pages"
    )
    logger.info(
        f"Enriched: {stats['records_enriched']} "
        f"(lookup failures: {stats['enrichment_failures']})"
    )
    logger.info(f"Resolved owner updates: {stats['updates_resolved']}")
    if summary.dry_run:
        logger.info("🔍 DRY RUN: no updates were written")
    else:
        logger.info(
            f"Updated: {stats['succeeded']} / {stats['attempted']} "
            f"(failed: {stats['failed']}, "
            f"distinct owners: {stats['unique_owners_assigned']})"
        )
    if summary.error:
        logger.error(f"❌ Run stopped early: {summary.error}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Re-attribute deal owners from company owner history"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve owners without writing them back",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = SyncConfig.from_env()
    except ValidationError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        return EXIT_ERROR

    try:
        summary = run_sync(config, dry_run=args.dry_run)
    except Exception as e:
        logger.exception(f"❌ Sync failed: {e}")
        return EXIT_ERROR

    log_summary(summary)
    return summary.exit_code


if __name__ == "__main__":
    exit(main())
