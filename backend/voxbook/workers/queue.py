"""Huey queue definitions, enqueue helpers and the recovery sweep."""

from __future__ import annotations

import logging

from huey import SqliteHuey, crontab

from voxbook.core.settings import PATHS
from voxbook.db.session import session_scope
from voxbook.services import repository
from voxbook.services.config_store import load_config
from voxbook.services.pipeline import execute_job, retry_pending_refunds, stale_cutoff

logger = logging.getLogger(__name__)

huey = SqliteHuey("voxbook", filename=str(PATHS.queue_path))


@huey.task(retries=0)
def run_job_task(job_id: str, resume: bool = False) -> None:
    execute_job(job_id, resume=resume)


def enqueue_job(job_id: str, resume: bool = False) -> None:
    run_job_task(job_id, resume)


def recover_jobs(*, include_fresh_queued: bool = True) -> dict[str, object]:
    """Re-enqueue orphaned jobs and retry refunds that did not go through.

    Queued jobs are re-enqueued (all of them at startup, only old ones on the
    periodic sweep). Processing jobs whose heartbeat is older than the
    liveness timeout are enqueued for resumption.
    """
    config = load_config()
    cutoff = stale_cutoff(config)
    with session_scope() as db:
        queued_ids = repository.list_queued_jobs(db, created_before=None if include_fresh_queued else cutoff)
        stale_ids = repository.list_stale_jobs(db, cutoff)
        refunded = retry_pending_refunds(db, config=config)

    for job_id in queued_ids:
        enqueue_job(job_id)
    for job_id in stale_ids:
        logger.warning("Job %s stalled in processing, enqueueing for resume", job_id)
        enqueue_job(job_id, resume=True)

    if queued_ids or stale_ids or refunded:
        logger.info(
            "Recovery sweep: %d queued, %d stalled, %d refunds retried",
            len(queued_ids),
            len(stale_ids),
            refunded,
        )
    return {"queued": queued_ids, "stalled": stale_ids, "refunded": refunded}


@huey.periodic_task(crontab(minute="*/5"))
def recover_jobs_task() -> None:
    recover_jobs(include_fresh_queued=False)
