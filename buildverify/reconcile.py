"""
Reconciliation sweep for jobs stuck in in_progress.

A job stays in_progress when the process died mid-verification or when its
final status write gave up. The sweep settles such jobs:
- the program's verified result was produced by this job -> completed
- otherwise -> failed
Jobs still running in this process are skipped.
"""

from datetime import timedelta
from typing import Iterable, Optional, Tuple

from .database import age_minutes
from .errors import InvalidTransitionError, PersistenceError
from .logger import StructuredLogger, get_logger
from .models import JobStatus
from .storage import JobStore


def reconcile_stuck_jobs(
    store: JobStore,
    max_age_minutes: int = 120,
    in_flight: Iterable[str] = (),
    logger: Optional[StructuredLogger] = None,
) -> Tuple[int, int, int]:
    """
    Settle in_progress jobs older than the given age.

    Args:
        store: Job record store
        max_age_minutes: Only jobs created longer ago than this are touched
        in_flight: Job ids still running in this process
        logger: Logger (default: global logger)

    Returns:
        Tuple of (jobs_checked, jobs_completed, jobs_failed)
    """
    logger = logger or get_logger()
    running = set(in_flight)

    try:
        stuck = store.find_stuck_jobs(timedelta(minutes=max_age_minutes))
    except PersistenceError as e:
        logger.error(f"Reconciliation failed: {e}", max_age_minutes=max_age_minutes)
        return (0, 0, 0)

    checked = completed = failed = 0
    for record in stuck:
        if record.id in running:
            continue
        checked += 1
        try:
            result = store.get_verified_result(record.request.program_id)
            if result is not None and result.job_id == record.id:
                store.update_status(record.id, JobStatus.COMPLETED)
                completed += 1
                new_status = JobStatus.COMPLETED
            else:
                store.update_status(record.id, JobStatus.FAILED)
                failed += 1
                new_status = JobStatus.FAILED
            logger.info(
                "Settled stuck job",
                job_id=record.id,
                program_id=record.request.program_id,
                status=new_status.value,
                age_minutes=round(age_minutes(record.created_at), 1),
            )
        except (PersistenceError, InvalidTransitionError) as e:
            # Another writer may have settled it; move on
            logger.warning("Could not settle stuck job", job_id=record.id, error=str(e))

    logger.info(
        f"Reconciliation complete: {completed} completed, {failed} failed",
        jobs_checked=checked,
        max_age_minutes=max_age_minutes,
    )
    return (checked, completed, failed)
