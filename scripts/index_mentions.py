"""Index user mentions as a resumable long run."""

import argparse
import logging
import sys
from pathlib import Path

import structlog

from longrunner.batch import CheckpointManager, CorruptCheckpoint, InvalidFilter
from longrunner.config import load_config
from longrunner.logging import LoggerConfig, ProgressTracker
from longrunner.mentions import JOB_TYPE, build_runner, resume_indexing, start_indexing
from longrunner.storage.database import Database

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Index user mentions in discussions and comments')
    parser.add_argument('--record-type', type=str, default='all',
                        help='Record type to index: all, discussion or comment (default: all)')
    parser.add_argument('--budget', type=int, help='Maximum records per invocation (default: from config)')
    parser.add_argument('--resume', type=str, metavar='RUN_ID', help='Resume a paused run')
    parser.add_argument('--until-complete', action='store_true',
                        help='Keep invoking until the run completes')
    parser.add_argument('--time-limit', type=float, help='Wall-clock limit per invocation in seconds')
    parser.add_argument('--list-runs', action='store_true', help='List recorded runs and exit')
    parser.add_argument('--reset', action='store_true', help='Clear the mention index before starting')
    parser.add_argument('--json-logs', action='store_true', help='Log in JSON format')
    parser.add_argument('--config', type=str, help='Path to config JSON')
    return parser.parse_args(argv)


def list_runs(manager: CheckpointManager):
    runs = manager.list_runs(job_type=JOB_TYPE)
    if not runs:
        logger.info("No runs recorded")
        return
    for run in runs:
        logger.info(f"{run['run_id']}: {run['status']} - {run['items_processed']} processed, "
                    f"{run['items_failed']} failed, {run['invocations']} invocations")


def run_indexing(args, config, db: Database, manager: CheckpointManager) -> int:
    """
    Run one or more invocations and record each outcome in the ledger.

    Returns:
        Process exit code: 0 complete, 2 paused, 1 error
    """
    budget = args.budget if args.budget is not None else config['max_iterations']
    runner = build_runner(db, page_size=config['page_size'], record_types=config['record_types'])
    struct_logger = structlog.get_logger()

    if args.resume:
        resume_data = manager.resume_run(args.resume)
        if not resume_data or not resume_data['checkpoint']:
            logger.error(f"Run '{args.resume}' cannot be resumed")
            return 1
        run_id = args.resume
        checkpoint = resume_data['checkpoint']
        already_processed = resume_data['items_processed']
    else:
        if args.reset:
            deleted = db.reset_table('user_mentions')
            logger.info(f"Cleared {deleted} indexed mentions")
        run_id = manager.create_run(JOB_TYPE, args.record_type)
        checkpoint = None
        already_processed = 0

    tracker = ProgressTracker(
        description=run_id,
        logger=struct_logger,
        log_every=max(budget // 10, 1),
        initial=already_processed
    )

    while True:
        try:
            if checkpoint is None:
                outcome = start_indexing(
                    db, record_filter=args.record_type, budget=budget, runner=runner,
                    time_limit=args.time_limit, progress_callback=tracker.on_progress
                )
            else:
                outcome = resume_indexing(
                    db, checkpoint, budget=budget, runner=runner,
                    time_limit=args.time_limit, progress_callback=tracker.on_progress
                )
        except (InvalidFilter, CorruptCheckpoint) as e:
            manager.fail_run(run_id, str(e))
            logger.error(f"Run {run_id} rejected: {e}")
            return 1
        except Exception as e:
            manager.fail_run(run_id, str(e))
            logger.error(f"Run {run_id} failed: {e}", exc_info=True)
            return 1

        manager.record_outcome(run_id, outcome)
        summary = outcome.summary.to_dict()

        if outcome.is_complete:
            logger.info(f"Run {run_id} complete: {summary['processed']} processed, "
                        f"{summary['failed']} failed, {summary['skipped']} skipped")
            return 0

        logger.info(f"Run {run_id} paused: {summary['processed']} processed so far")
        if not args.until_complete or not outcome.results:
            logger.info(f"Continue with: --resume {run_id}")
            return 2
        checkpoint = outcome.checkpoint


def main(argv=None) -> int:
    args = parse_args(argv)
    config = load_config(args.config)

    LoggerConfig(log_dir=config['log_dir']).setup(
        level=config['log_level'],
        json_output=args.json_logs
    )

    Path(config['checkpoint_db']).parent.mkdir(parents=True, exist_ok=True)
    manager = CheckpointManager(config['checkpoint_db'])
    if args.list_runs:
        list_runs(manager)
        return 0

    db = Database(config['database_path'])
    exit_code = run_indexing(args, config, db, manager)

    stats = db.get_statistics()
    logger.info(f"Indexed mentions: {stats['user_mentions']} "
                f"({stats['mentioned_users']} users, {stats['discussions']} discussions, "
                f"{stats['comments']} comments)")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
