"""Job runner: ``examcore-jobs <job_key>``, meant for cron or a scheduler."""

import sys

import click

from examcore.core.logging import get_logger, setup_logging
from examcore.db import session as db_session
from examcore.services.test_sessions import TestSessionManager

logger = get_logger(__name__)


def expire_overdue(limit: int) -> int:
    """Expire active test sessions past their time limit, batch by batch."""
    expired = 0
    with db_session.session_scope() as db:
        manager = TestSessionManager(db)
        while True:
            batch = manager.expire_overdue(limit=limit)
            expired += len(batch.expired)
            # Conflicted sessions are left for the next run
            if not batch.expired or len(batch.expired) + len(batch.skipped) < limit:
                break
    logger.info("expire_overdue_job_done", extra={"expired": expired, "batch_size": limit})
    return expired


JOBS = {"expire_overdue": expire_overdue}


@click.command()
@click.argument("job_key", type=click.Choice(sorted(JOBS)))
@click.option("--limit", default=100, show_default=True, type=click.IntRange(min=1), help="Batch size")
def run(job_key: str, limit: int):
    """Run one maintenance job and exit non-zero on failure."""
    setup_logging()
    try:
        count = JOBS[job_key](limit)
    except Exception as e:
        logger.error("job_failed", extra={"job_key": job_key, "error": str(e)}, exc_info=True)
        click.echo(f"Job failed: {e}", err=True)
        sys.exit(1)
    click.echo(f"Job completed: expired {count} session(s)")


if __name__ == "__main__":
    run()
