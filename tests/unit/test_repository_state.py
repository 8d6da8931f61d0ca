from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from voxbook.core.constants import JobKind, JobStatus
from voxbook.db.base import Base
from voxbook.models import Job, JobEvent
from voxbook.services import repository


@pytest.fixture
def local_db() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    LocalSession = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
    with LocalSession() as db:
        yield db


def _create(db: Session, job_id: str = "job_1", total_items: int = 3, **kwargs) -> Job:
    job = repository.create_job(
        db,
        job_id=job_id,
        kind=JobKind.TEXT_TO_SPEECH,
        input_payload={"text": "Hello."},
        total_items=total_items,
        estimated_duration="1-3 minutes",
        **kwargs,
    )
    db.commit()
    return job


def test_job_status_flow_in_memory(local_db: Session) -> None:
    _create(local_db)

    job = repository.claim_job(local_db, "job_1")
    local_db.commit()
    assert job is not None
    assert job.status == JobStatus.PROCESSING.value
    assert job.started_at is not None

    repository.record_progress(local_db, "job_1", completed_items=1, progress_percent=30, current_step="Chunk 1/3")
    repository.put_artifact(local_db, "job_1", "chunk_0001", "/tmp/chunk_0001.mp3")
    repository.complete_job(local_db, "job_1", {"download_url": "https://cdn/x.mp3"})
    local_db.commit()

    job = repository.get_job(local_db, "job_1")
    out = repository.to_job_status(job)
    assert out.status == JobStatus.COMPLETED.value
    assert out.progress_percent == 100
    assert out.completed_items == 3
    assert out.output == {"download_url": "https://cdn/x.mp3"}
    assert repository.get_artifacts(job)["chunk_0001"] == "/tmp/chunk_0001.mp3"

    messages = [event.message for event in repository.list_events(local_db, "job_1")]
    assert messages[0] == "Job queued"
    assert messages[-1] == "Complete!"


def test_create_job_requires_items(local_db: Session) -> None:
    with pytest.raises(ValueError):
        _create(local_db, total_items=0)


def test_claim_is_exclusive(local_db: Session) -> None:
    _create(local_db)
    assert repository.claim_job(local_db, "job_1") is not None
    local_db.commit()
    assert repository.claim_job(local_db, "job_1") is None
    assert repository.claim_job(local_db, "missing") is None


def test_progress_is_monotonic_and_clamped(local_db: Session) -> None:
    _create(local_db)
    repository.claim_job(local_db, "job_1")

    repository.record_progress(local_db, "job_1", completed_items=2, progress_percent=60)
    job = repository.record_progress(local_db, "job_1", completed_items=1, progress_percent=40)
    assert job.completed_items == 2
    assert job.progress_percent == 60

    job = repository.record_progress(local_db, "job_1", completed_items=7, progress_percent=100)
    assert job.completed_items == 3
    assert job.progress_percent == 99


def test_progress_requires_processing(local_db: Session) -> None:
    _create(local_db)
    with pytest.raises(repository.JobStateError):
        repository.record_progress(local_db, "job_1", progress_percent=10)


def test_terminal_states_are_final(local_db: Session) -> None:
    _create(local_db)
    repository.claim_job(local_db, "job_1")
    repository.complete_job(local_db, "job_1", {"ok": True})
    local_db.commit()

    assert repository.fail_job(local_db, "job_1", "late failure") is None
    job = repository.get_job(local_db, "job_1")
    assert job.status == JobStatus.COMPLETED.value
    assert job.error_message is None

    with pytest.raises(repository.JobStateError):
        repository.complete_job(local_db, "job_1", {"ok": False})
    with pytest.raises(repository.JobStateError):
        repository.record_progress(local_db, "job_1", progress_percent=50)


def test_fail_clears_output(local_db: Session) -> None:
    _create(local_db)
    repository.claim_job(local_db, "job_1")
    job = repository.fail_job(local_db, "job_1", "Chunk 2 failed: boom")
    local_db.commit()

    assert job.status == JobStatus.FAILED.value
    assert job.output_json is None
    assert job.completed_at is not None
    assert repository.to_job_status(job).output is None


def test_fail_rejects_queued_job(local_db: Session) -> None:
    _create(local_db)
    with pytest.raises(repository.JobStateError):
        repository.fail_job(local_db, "job_1", "never started")


def test_stale_processing_job_can_be_taken_over(local_db: Session) -> None:
    _create(local_db)
    repository.claim_job(local_db, "job_1")
    local_db.commit()

    now = datetime.now(timezone.utc)
    assert repository.claim_job(local_db, "job_1", stale_before=now - timedelta(minutes=15)) is None

    job = repository.get_job(local_db, "job_1")
    job.heartbeat_at = now - timedelta(hours=1)
    local_db.commit()

    assert repository.list_stale_jobs(local_db, now - timedelta(minutes=15)) == ["job_1"]
    resumed = repository.claim_job(local_db, "job_1", stale_before=now - timedelta(minutes=15))
    local_db.commit()
    assert resumed is not None
    assert resumed.status == JobStatus.PROCESSING.value
    assert repository.list_stale_jobs(local_db, now - timedelta(minutes=15)) == []


def test_refund_claim_is_exactly_once(local_db: Session) -> None:
    _create(local_db, user_id="user-1", credits_charged=100)
    repository.claim_job(local_db, "job_1")
    repository.fail_job(local_db, "job_1", "boom")
    local_db.commit()

    assert [job.id for job in repository.list_unrefunded_failures(local_db)] == ["job_1"]
    assert repository.claim_refund(local_db, "job_1") is True
    assert repository.claim_refund(local_db, "job_1") is False
    local_db.commit()
    assert repository.list_unrefunded_failures(local_db) == []

    repository.release_refund(local_db, "job_1", "ledger offline")
    local_db.commit()
    assert repository.claim_refund(local_db, "job_1") is True


def test_uncharged_job_is_never_refunded(local_db: Session) -> None:
    _create(local_db)
    repository.claim_job(local_db, "job_1")
    repository.fail_job(local_db, "job_1", "boom")
    local_db.commit()
    assert repository.claim_refund(local_db, "job_1") is False


def test_list_jobs_filters(local_db: Session) -> None:
    _create(local_db, job_id="a", user_id="u1")
    _create(local_db, job_id="b", user_id="u2")
    repository.claim_job(local_db, "b")
    local_db.commit()

    assert [job.id for job in repository.list_jobs(local_db, user_id="u1")] == ["a"]
    assert [job.id for job in repository.list_jobs(local_db, status=JobStatus.PROCESSING)] == ["b"]
    assert len(repository.list_jobs(local_db, limit=1)) == 1
    assert repository.list_queued_jobs(local_db) == ["a"]


# Keep explicit imports referenced for SQLAlchemy mapper configuration.
_ = (Job, JobEvent)
