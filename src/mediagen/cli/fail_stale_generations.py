"""CLI command for closing generation requests whose job chain died.

Records left in PENDING or PROCESSING longer than the threshold are marked
FAILED so clients stop waiting on them.

Usage:
    python -m mediagen.cli.fail_stale_generations [OPTIONS]

Examples:
    # Fail records older than STALE_GENERATION_MINUTES (default 30)
    python -m mediagen.cli.fail_stale_generations

    # Custom threshold
    python -m mediagen.cli.fail_stale_generations --older-than-minutes 120

    # List stale records without writing
    python -m mediagen.cli.fail_stale_generations --dry-run

    # Verbose logging
    python -m mediagen.cli.fail_stale_generations -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from datetime import timedelta
from typing import Optional, Sequence

import structlog

from mediagen.core.config import Settings, configure_logging
from mediagen.core.database import setup_db_session
from mediagen.core.timezone import utcnow
from mediagen.models.media_generation import MediaGeneration, RequestStatus
from mediagen.uow import create_uow_factory

logger = structlog.get_logger(__name__)

STALE_STATUSES = [RequestStatus.PENDING, RequestStatus.PROCESSING]
REPORT_LIMIT = 20


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Mark stale PENDING/PROCESSING generation requests as FAILED",
    )

    parser.add_argument(
        "--older-than-minutes",
        type=int,
        help="Age threshold in minutes (default: STALE_GENERATION_MINUTES)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List stale records without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def fail_stale_generations(
    uow_factory, older_than_minutes: int, dry_run: bool = False
) -> list[MediaGeneration]:
    """Mark every stale generation FAILED.

    Records that reach a terminal state between the read and the write keep
    that state and are left out of the result.

    Returns:
        The stale records found (dry_run) or the records now FAILED
    """
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    message = f"Generation did not complete within {older_than_minutes} minutes"

    async with await uow_factory() as uow:
        stale = await uow.generations.get_stale(STALE_STATUSES, created_before=cutoff)
        if dry_run:
            swept = stale
        else:
            swept = [
                generation
                for generation in stale
                if await uow.generations.fail_if_open(generation, message)
            ]

    logger.info(
        "cli.stale_generations",
        count=len(swept),
        skipped=len(stale) - len(swept),
        older_than_minutes=older_than_minutes,
        dry_run=dry_run,
    )
    return swept


def print_report(stale: list[MediaGeneration], older_than_minutes: int, dry_run: bool) -> None:
    verb = "Would fail" if dry_run else "Failed"
    print(f"{verb} {len(stale)} generation(s) older than {older_than_minutes} minutes")
    for generation in stale[:REPORT_LIMIT]:
        print(
            f"  {generation.id}  {generation.media_type.value:<6} "
            f"{generation.status.value:<10} created {generation.created_at:%Y-%m-%d %H:%M}"
        )
    if len(stale) > REPORT_LIMIT:
        print(f"  (+{len(stale) - REPORT_LIMIT} more)")


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the sweep.

    Returns:
        Exit code: 0 (success), 1 (error), 130 (interrupted)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    configure_logging(
        settings.model_copy(update={"log_level": "DEBUG"}) if args.verbose else settings
    )

    older_than = args.older_than_minutes
    if older_than is None:
        older_than = settings.stale_generation_minutes
    if older_than <= 0:
        print("--older-than-minutes must be a positive number of minutes", file=sys.stderr)
        return 1

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    try:
        stale = await fail_stale_generations(
            create_uow_factory(session_factory), older_than, dry_run=args.dry_run
        )
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(
            "cli.stale_generations.failed",
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        print(f"Sweep failed: {e}", file=sys.stderr)
        return 1
    finally:
        await session_factory.kw["bind"].dispose()

    print_report(stale, older_than, args.dry_run)
    return 0


def main() -> None:
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
