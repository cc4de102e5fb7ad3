"""Entry point for the job mailer.

Scheduled runs and on-demand diagnostic runs go through the same code path.

Usage:
    python -m job_mailer.main                    # run one dispatch cycle
    python -m job_mailer.main --config my.yaml   # use custom config
    python -m job_mailer.main --stats            # print queue stats only
    python -m job_mailer.main --cleanup 90       # drop sent jobs older than 90 days
    python -m job_mailer.main --reset            # delete the queue document
    python -m job_mailer.main --dry-run          # validate config, ping Mailchimp, print stats
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from job_mailer.blobs import build_blob_store
from job_mailer.campaign import MailchimpSender
from job_mailer.config import MailerConfig, load_config
from job_mailer.dispatch import CycleResult, DispatchController, error_result
from job_mailer.errors import ConfigurationError, JobMailerError
from job_mailer.feed import FeedClient, FeedDetailHydrator, FeedMetadataSource
from job_mailer.notify import ResendNotifier
from job_mailer.queue import JobQueueStore

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the mailer."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job Mailer - queue postings from an RSS job feed and send "
        "an email campaign once enough have accumulated."
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument(
        "--stats",
        action="store_true",
        help="Print queue statistics and exit",
    )
    action.add_argument(
        "--cleanup",
        type=int,
        nargs="?",
        const=-1,
        default=None,
        metavar="DAYS",
        help="Remove sent jobs older than DAYS (default: cleanup_max_age_days from config)",
    )
    action.add_argument(
        "--reset",
        action="store_true",
        help="Delete the queue document (administrative reset)",
    )
    action.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate config, check Mailchimp credentials and print queue stats without fetching or sending",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug-level logging",
    )
    return parser.parse_args(argv)


def build_queue(config: MailerConfig) -> JobQueueStore:
    return JobQueueStore(
        build_blob_store(config.storage),
        key=config.storage.key,
        threshold=config.threshold,
    )


def build_controller(config: MailerConfig) -> DispatchController:
    """Wire the production collaborators from config."""
    config.validate()
    client = FeedClient(config.feed)
    return DispatchController(
        config=config,
        queue=build_queue(config),
        metadata_source=FeedMetadataSource(client),
        hydrator=FeedDetailHydrator(client),
        sender=MailchimpSender(config.campaign),
        notifier=ResendNotifier(config.notify),
    )


def run_once(config: MailerConfig) -> CycleResult:
    """Run one dispatch cycle, reporting configuration errors as results."""
    try:
        controller = build_controller(config)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        ResendNotifier(config.notify).notify_failure(exc)
        return error_result(exc)
    return controller.run_cycle()


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        setup_logging()
        _emit(error_result(exc).to_dict())
        return 1

    setup_logging("DEBUG" if args.verbose else config.log_level)

    if args.stats or args.dry_run:
        try:
            if args.dry_run:
                config.validate()
            queue = build_queue(config)
            if args.dry_run:
                MailchimpSender(config.campaign).ping()
                logger.info("Dry run - configuration valid and Mailchimp reachable, nothing fetched or sent")
        except JobMailerError as exc:
            logger.error("%s", exc)
            _emit(error_result(exc).to_dict())
            return 1
        stats = queue.get_queue_stats()
        _emit(stats.to_dict())
        return 1 if stats.error else 0

    if args.cleanup is not None or args.reset:
        try:
            queue = build_queue(config)
            if args.reset:
                previous = queue.reset()
                _emit({"message": "Job queue reset", "previousState": previous.to_dict()})
            else:
                days = config.cleanup_max_age_days if args.cleanup < 0 else args.cleanup
                state = queue.cleanup_old_jobs(days)
                _emit({"message": f"Cleanup complete ({days} days)", "totalJobs": len(state.job_queue)})
        except JobMailerError as exc:
            logger.error("%s", exc)
            _emit(error_result(exc).to_dict())
            return 1
        return 0

    result = run_once(config)
    _emit(result.to_dict())
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
