"""Persistence helpers for jobs and events."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from voxbook.core.constants import JobKind, JobStatus, TERMINAL_STATES
from voxbook.models.job import Job, JobEvent
from voxbook.schemas.job import JobStatusOut

_TERMINAL_VALUES = {state.value for state in TERMINAL_STATES}


class JobStateError(RuntimeError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_load(value: Optional[str]) -> dict[str, Any]:
    if not value:
        return {}
    try:
        loaded = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


def _json_dump(value: dict[str, Any]) -> str:
    return json.dumps(value, ensure_ascii=False)


def get_input(job: Job) -> dict[str, Any]:
    return _json_load(job.input_json)


def get_output(job: Job) -> Optional[dict[str, Any]]:
    if job.output_json is None:
        return None
    return _json_load(job.output_json)


def get_meta(job: Job) -> dict[str, Any]:
    return _json_load(job.meta_json)


def get_artifacts(job: Job) -> dict[str, str]:
    return {k: str(v) for k, v in _json_load(job.artifacts_json).items()}


def is_terminal(job: Job) -> bool:
    return job.status in _TERMINAL_VALUES


def to_job_status(job: Job) -> JobStatusOut:
    return JobStatusOut(
        id=job.id,
        kind=job.kind,
        status=job.status,
        user_id=job.user_id,
        progress_percent=job.progress_percent,
        current_step=job.current_step,
        total_items=job.total_items,
        completed_items=job.completed_items,
        estimated_duration=job.estimated_duration,
        output=get_output(job),
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


def create_job(
    db: Session,
    *,
    job_id: str,
    kind: Union[JobKind, str],
    input_payload: dict[str, Any],
    total_items: int,
    estimated_duration: str,
    user_id: Optional[str] = None,
    credits_charged: int = 0,
) -> Job:
    if total_items < 1:
        raise ValueError("total_items must be at least 1")
    job = Job(
        id=job_id,
        kind=kind.value if isinstance(kind, JobKind) else kind,
        status=JobStatus.QUEUED.value,
        user_id=user_id,
        input_json=_json_dump(input_payload),
        total_items=total_items,
        completed_items=0,
        progress_percent=0,
        current_step="Queued",
        estimated_duration=estimated_duration,
        meta_json="{}",
        artifacts_json="{}",
        credits_charged=credits_charged,
        credits_refunded=False,
    )
    db.add(job)
    db.flush()
    append_event(db, job_id, JobStatus.QUEUED.value, "Job queued")
    return job


def get_job(db: Session, job_id: str) -> Optional[Job]:
    return db.get(Job, job_id)


def _require_job(db: Session, job_id: str) -> Job:
    job = get_job(db, job_id)
    if not job:
        raise ValueError(f"job not found: {job_id}")
    return job


def _require_processing(db: Session, job_id: str) -> Job:
    job = _require_job(db, job_id)
    if job.status != JobStatus.PROCESSING.value:
        raise JobStateError(f"job {job_id} is {job.status}, expected processing")
    return job


def list_jobs(
    db: Session,
    *,
    user_id: Optional[str] = None,
    status: Optional[Union[JobStatus, str]] = None,
    limit: int = 20,
) -> list[Job]:
    stmt = select(Job).order_by(Job.created_at.desc(), Job.id.desc()).limit(limit)
    if user_id:
        stmt = stmt.where(Job.user_id == user_id)
    if status:
        stmt = stmt.where(Job.status == (status.value if isinstance(status, JobStatus) else status))
    return list(db.scalars(stmt))


def claim_job(db: Session, job_id: str, *, stale_before: Optional[datetime] = None) -> Optional[Job]:
    """Take ownership of a job for execution.

    A queued job is moved to processing. When ``stale_before`` is given, a
    processing job whose heartbeat is older than that instant is taken over
    instead. Returns ``None`` when the job is not claimable, which is how a
    second trigger for the same job becomes a no-op.
    """
    now = _utcnow()
    claimed = db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.QUEUED.value)
        .values(status=JobStatus.PROCESSING.value, started_at=now, heartbeat_at=now, current_step="Starting")
        .execution_options(synchronize_session=False)
    ).rowcount
    message = "Job picked up for processing"

    if not claimed and stale_before is not None:
        claimed = db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.PROCESSING.value,
                or_(Job.heartbeat_at.is_(None), Job.heartbeat_at < stale_before),
            )
            .values(heartbeat_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        message = "Resuming stalled job"

    if claimed != 1:
        return None

    job = db.get(Job, job_id, populate_existing=True)
    append_event(db, job_id, JobStatus.PROCESSING.value, message, job.progress_percent if job else 0)
    return job


def record_progress(
    db: Session,
    job_id: str,
    *,
    completed_items: Optional[int] = None,
    progress_percent: Optional[int] = None,
    current_step: Optional[str] = None,
) -> Job:
    job = _require_processing(db, job_id)

    if completed_items is not None:
        job.completed_items = max(job.completed_items, min(completed_items, job.total_items))
    if progress_percent is not None:
        # 100 is reserved for the completed transition.
        job.progress_percent = max(job.progress_percent, min(progress_percent, 99))
    if current_step:
        job.current_step = current_step
        append_event(db, job_id, job.status, current_step, job.progress_percent)
    job.heartbeat_at = _utcnow()
    db.flush()
    return job


def complete_job(db: Session, job_id: str, output: dict[str, Any], message: str = "Complete!") -> Job:
    job = _require_processing(db, job_id)
    now = _utcnow()
    job.status = JobStatus.COMPLETED.value
    job.output_json = _json_dump(output)
    job.error_message = None
    job.completed_items = job.total_items
    job.progress_percent = 100
    job.current_step = message
    job.heartbeat_at = now
    job.completed_at = now
    append_event(db, job_id, job.status, message, 100)
    db.flush()
    return job


def fail_job(db: Session, job_id: str, error_message: str) -> Optional[Job]:
    """Move a processing job to failed. Returns ``None`` if it was already terminal."""
    job = _require_job(db, job_id)
    if is_terminal(job):
        return None
    if job.status != JobStatus.PROCESSING.value:
        raise JobStateError(f"job {job_id} is {job.status}, expected processing")

    now = _utcnow()
    job.status = JobStatus.FAILED.value
    job.error_message = error_message
    job.output_json = None
    job.current_step = "Failed"
    job.heartbeat_at = now
    job.completed_at = now
    append_event(db, job_id, job.status, error_message, job.progress_percent)
    db.flush()
    return job


def claim_refund(db: Session, job_id: str) -> bool:
    """Atomically flag a failed, charged job as refunded. Only one caller wins."""
    claimed = db.execute(
        update(Job)
        .where(
            Job.id == job_id,
            Job.status == JobStatus.FAILED.value,
            Job.credits_charged > 0,
            Job.credits_refunded.is_(False),
        )
        .values(credits_refunded=True)
        .execution_options(synchronize_session=False)
    ).rowcount
    if claimed == 1:
        db.get(Job, job_id, populate_existing=True)
    return claimed == 1


def release_refund(db: Session, job_id: str, reason: str) -> None:
    job = _require_job(db, job_id)
    job.credits_refunded = False
    append_event(db, job_id, job.status, f"Refund pending: {reason}", job.progress_percent)
    db.flush()


def patch_meta(db: Session, job_id: str, **kwargs: Any) -> Job:
    job = _require_job(db, job_id)
    meta = _json_load(job.meta_json)
    meta.update(kwargs)
    job.meta_json = _json_dump(meta)
    db.flush()
    return job


def put_artifact(db: Session, job_id: str, kind: str, path: str) -> Job:
    job = _require_job(db, job_id)
    artifacts = _json_load(job.artifacts_json)
    artifacts[kind] = path
    job.artifacts_json = _json_dump(artifacts)
    db.flush()
    return job


def append_event(db: Session, job_id: str, status: str, message: str, progress_percent: int = 0) -> JobEvent:
    event = JobEvent(job_id=job_id, status=status, message=message, progress_percent=progress_percent)
    db.add(event)
    db.flush()
    return event


def list_events(db: Session, job_id: str, after_id: int = 0) -> list[JobEvent]:
    stmt = (
        select(JobEvent)
        .where(JobEvent.job_id == job_id, JobEvent.id > after_id)
        .order_by(JobEvent.id.asc())
    )
    return list(db.scalars(stmt))


def list_queued_jobs(db: Session, created_before: Optional[datetime] = None) -> list[str]:
    stmt = select(Job.id).where(Job.status == JobStatus.QUEUED.value).order_by(Job.created_at.asc())
    if created_before is not None:
        stmt = stmt.where(Job.created_at < created_before)
    return list(db.scalars(stmt))


def list_stale_jobs(db: Session, stale_before: datetime) -> list[str]:
    stmt = (
        select(Job.id)
        .where(
            Job.status == JobStatus.PROCESSING.value,
            or_(Job.heartbeat_at.is_(None), Job.heartbeat_at < stale_before),
        )
        .order_by(Job.created_at.asc())
    )
    return list(db.scalars(stmt))


def list_unrefunded_failures(db: Session) -> list[Job]:
    stmt = select(Job).where(
        Job.status == JobStatus.FAILED.value,
        Job.credits_charged > 0,
        Job.credits_refunded.is_(False),
    )
    return list(db.scalars(stmt))
