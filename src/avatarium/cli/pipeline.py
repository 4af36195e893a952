"""CLI commands for running pipeline entry points from a shell or scheduler.

Usage:
    python -m avatarium.cli poll           # one task poller pass + aggregation
    python -m avatarium.cli sweep          # fail and refund stuck jobs
    python -m avatarium.cli retry JOB_ID   # reset a finished job and dispatch it again

Add -v for DEBUG logging.
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional
from uuid import UUID

import structlog

from avatarium.core import timezone  # noqa: F401
from avatarium.core.config import Settings, configure_logging
from avatarium.core.database import setup_db_session
from avatarium.services.collaborators import build_collaborators
from avatarium.services.dispatcher import publish_first_chunk, retry_job, run_job_inline
from avatarium.services.stuck_jobs import sweep_stuck_jobs
from avatarium.uow import create_uow_factory
from avatarium.workers.task_poller import poll_once

logger = structlog.get_logger()


def parse_args(argv: Optional[list[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Generation pipeline maintenance commands")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("poll", help="Run one task poller pass")
    subparsers.add_parser("sweep", help="Fail and refund stuck jobs")
    retry = subparsers.add_parser("retry", help="Retry a completed, failed or cancelled job")
    retry.add_argument("job_id", type=UUID)

    return parser.parse_args(argv)


async def async_main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    collaborators = build_collaborators(settings)

    logger.info("cli.started", command=args.command)

    try:
        if args.command == "poll":
            summary = await poll_once(uow_factory, settings, collaborators)
            print(
                f"checked={summary.checked} completed={summary.completed} "
                f"failed={summary.failed} timed_out={summary.timed_out} "
                f"pending={summary.pending} errors={summary.errors} deferred={summary.deferred}"
            )
            return 0

        if args.command == "sweep":
            sweep = await sweep_stuck_jobs(uow_factory, collaborators, settings)
            print(f"checked={sweep.checked} failed={len(sweep.failed_job_ids)}")
            for job_id in sweep.failed_job_ids:
                print(f"  - {job_id}")
            return 0

        job = await retry_job(uow_factory, args.job_id)
        if job is None:
            print(f"Error: job {args.job_id} not found or still active", file=sys.stderr)
            return 1

        if await publish_first_chunk(collaborators, settings, job.id):
            print(f"Job {job.id} reset and queued")
        else:
            dispatch = await run_job_inline(uow_factory, settings, collaborators, job.id)
            submitted = dispatch.submitted if dispatch else 0
            print(f"Job {job.id} reset and dispatched inline ({submitted} submitted)")
        return 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            command=args.command,
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
