from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from voxbook.core.constants import JobKind
from voxbook.services import repository
from voxbook.workers import queue


def _create(db: Session, job_id: str) -> None:
    repository.create_job(
        db,
        job_id=job_id,
        kind=JobKind.TEXT_TO_SPEECH,
        input_payload={"text": "Hello."},
        total_items=1,
        estimated_duration="1-3 minutes",
    )


def _seed(db: Session) -> None:
    for job_id in ("q1", "p1", "p2"):
        _create(db, job_id)
    repository.claim_job(db, "p1")
    repository.claim_job(db, "p2")
    repository.get_job(db, "p1").heartbeat_at = datetime.now(timezone.utc) - timedelta(hours=1)
    db.commit()


def test_recover_jobs_requeues_and_resumes(db, monkeypatch) -> None:
    calls: list[tuple[str, bool]] = []
    monkeypatch.setattr(queue, "enqueue_job", lambda job_id, resume=False: calls.append((job_id, resume)))
    _seed(db)

    result = queue.recover_jobs()

    assert calls == [("q1", False), ("p1", True)]
    assert result == {"queued": ["q1"], "stalled": ["p1"], "refunded": 0}


def test_periodic_sweep_leaves_fresh_queued_jobs(db, monkeypatch) -> None:
    calls: list[tuple[str, bool]] = []
    monkeypatch.setattr(queue, "enqueue_job", lambda job_id, resume=False: calls.append((job_id, resume)))
    _seed(db)

    result = queue.recover_jobs(include_fresh_queued=False)

    assert calls == [("p1", True)]
    assert result["queued"] == []
