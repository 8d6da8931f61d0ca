"""Read-only projections of job records for clients."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from voxbook.core.constants import JobStatus
from voxbook.schemas.job import JobStatusOut
from voxbook.services import repository


class JobNotFound(LookupError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


def get_job_status(db: Session, job_id: str) -> JobStatusOut:
    job = repository.get_job(db, job_id)
    if not job:
        raise JobNotFound(job_id)
    return repository.to_job_status(job)


def list_job_statuses(
    db: Session,
    *,
    user_id: Optional[str] = None,
    status: Optional[JobStatus] = None,
    limit: int = 20,
) -> list[JobStatusOut]:
    jobs = repository.list_jobs(db, user_id=user_id, status=status, limit=limit)
    return [repository.to_job_status(job) for job in jobs]
