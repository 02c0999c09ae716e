"""
1.0 Main Entry Point
Runs one invocation of the broken link checker.

Meant to be scheduled (cron, CI) every ~30 minutes. Each run picks up where
the previous one stopped; once every account has been checked the cycle is
complete and nothing happens until frequency_days have passed.

Usage:
    python -m link_checker.main
    python -m link_checker.main --config config.json --preview
    python -m link_checker.main --data-dir output --time-limit 600
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

from link_checker.config import CONFIG_FILE_PATH, Options, require_config
from link_checker.coordinator import CycleAction, CycleCoordinator, InvocationReport
from link_checker.dispatch import TaskStatus
from link_checker.errors import CheckpointUnavailableError, ConfigError

# 1.1 Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler("link_checker.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check the final URLs of ads, keywords and sitelinks for broken links"
    )
    parser.add_argument(
        "--config", "-c",
        default=CONFIG_FILE_PATH,
        help=f"Configuration file (default: {CONFIG_FILE_PATH})"
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Override the data directory from the config"
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Preview mode: probe URLs but never write marks"
    )
    parser.add_argument(
        "--time-limit",
        type=float,
        default=None,
        help="Override the execution time limit in seconds"
    )
    return parser.parse_args(argv)


def log_summary(report: InvocationReport) -> None:
    """2.0 Per-account summary in the same shape as the other pipelines."""
    logger.info("=" * 60)
    logger.info(f"Cycle action: {report.action.value}")
    for result in report.execution_results:
        if result.status is TaskStatus.OK:
            logger.info(f"  [OK] {result.account_id}")
        elif result.status is TaskStatus.TIMEOUT:
            logger.warning(f"  [TIMEOUT] {result.account_id}")
        else:
            logger.error(f"  [FAIL] {result.account_id}: {result.error}")

    if report.aggregate is not None:
        logger.info(f"URLs checked this run: {len(report.aggregate.url_checks)}")
        logger.info(f"Errors this run: {report.aggregate.num_errors}")
        logger.info(f"Cycle complete: {report.aggregate.did_complete}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    3.0 Load configuration, run the coordinator and report.

    Returns the process exit code: 0 on success (including waiting runs),
    1 when configuration or checkpointing made the run impossible.
    """
    args = parse_args(argv)

    logger.info("=" * 60)
    logger.info("Starting Broken Link Checker")
    logger.info(f"Timestamp: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    try:
        # 3.1 Load configuration
        config = require_config(args.config)
        if args.data_dir:
            config["data_directory"] = args.data_dir
        if args.time_limit is not None:
            config["execution_time_limit_seconds"] = args.time_limit
        options = Options.from_dict(config.get("options"))

        # 3.2 Wire and run
        coordinator = CycleCoordinator.from_config(config, preview=True if args.preview else None)
        report = coordinator.run(options)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except CheckpointUnavailableError as e:
        logger.error(f"Checkpointing unavailable: {e}")
        return 1

    # 3.3 Summary
    log_summary(report)
    logger.info("=" * 60)
    if report.action is CycleAction.WAIT:
        logger.info("Nothing to do this run")
    logger.info("Broken Link Checker finished")
    logger.info("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
