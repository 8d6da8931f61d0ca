"""FastAPI route definitions."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from voxbook.core.constants import JobKind, JobStatus, OutputFormat
from voxbook.core.settings import APP_VERSION, PATHS
from voxbook.db.session import SessionLocal, get_db_session
from voxbook.schemas.config import AppConfig
from voxbook.schemas.job import JobCreateRequest, JobCreateResponse, JobEventOut, JobStatusOut
from voxbook.services import dispatcher, repository
from voxbook.services.config_store import load_config, save_config
from voxbook.services.credits import CreditsError, InsufficientCredits
from voxbook.services.status import JobNotFound, get_job_status, list_job_statuses
from voxbook.services.storage import LocalStorage, StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


async def _save_upload(upload: UploadFile, target: Path, max_bytes: int) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    try:
        with target.open("wb") as f:
            while True:
                chunk = await upload.read(1024 * 1024)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise HTTPException(status_code=413, detail="Uploaded file exceeds max size")
                f.write(chunk)
    except HTTPException:
        target.unlink(missing_ok=True)
        raise
    if written == 0:
        target.unlink(missing_ok=True)
        raise HTTPException(status_code=400, detail="Uploaded file is empty")


def _submit(db: Session, request: JobCreateRequest) -> JobCreateResponse:
    try:
        return dispatcher.submit_job(db, request)
    except dispatcher.InvalidJobInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InsufficientCredits as exc:
        raise HTTPException(
            status_code=402,
            detail={"error": "Insufficient credits", "required": exc.required, "available": exc.available},
        ) from exc
    except CreditsError as exc:
        logger.error("Credits ledger unavailable: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/health")
def health(db: Session = Depends(get_db_session)) -> dict[str, object]:
    return {
        "version": APP_VERSION,
        "queue_db": str(PATHS.queue_path),
        "queued_jobs": len(repository.list_queued_jobs(db)),
    }


@router.get("/config", response_model=AppConfig)
def get_config() -> AppConfig:
    return load_config()


@router.put("/config", response_model=AppConfig)
def put_config(config: AppConfig) -> AppConfig:
    return save_config(config)


@router.post("/jobs", response_model=JobCreateResponse)
def create_job(request: JobCreateRequest, db: Session = Depends(get_db_session)) -> JobCreateResponse:
    return _submit(db, request)


@router.post("/jobs/transcriptions", response_model=JobCreateResponse)
async def create_transcription_job(
    audio_file: UploadFile = File(...),
    title: str = Form("Transcribed Book"),
    output_format: OutputFormat = Form(OutputFormat.TXT),
    user_id: Optional[str] = Form(None),
    db: Session = Depends(get_db_session),
) -> JobCreateResponse:
    if not audio_file.filename:
        raise HTTPException(status_code=400, detail="audio_file filename is required")

    config = load_config()
    suffix = Path(audio_file.filename).suffix.lower() or ".mp3"
    stored_name = f"{uuid.uuid4().hex}{suffix}"
    target = PATHS.uploads_root / stored_name
    await _save_upload(audio_file, target, config.pipeline.max_upload_mb * 1024 * 1024)

    request = JobCreateRequest(
        kind=JobKind.SPEECH_TO_TEXT.value,
        input={"audio_ref": f"upload://{stored_name}", "title": title, "output_format": output_format.value},
        user_id=user_id or None,
    )
    try:
        return _submit(db, request)
    except HTTPException:
        target.unlink(missing_ok=True)
        raise


@router.post("/jobs/{job_id}/process")
def process_job(job_id: str, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        dispatched = dispatcher.dispatch_job(db, job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    if not dispatched:
        return {"job_id": job_id, "dispatched": False, "message": "Already processing"}
    return {"job_id": job_id, "dispatched": True, "message": "Job dispatched"}


@router.get("/jobs", response_model=list[JobStatusOut])
def list_jobs(
    user_id: Optional[str] = Query(None),
    status: Optional[JobStatus] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=200),
    db: Session = Depends(get_db_session),
) -> list[JobStatusOut]:
    limit = limit or load_config().pipeline.default_list_limit
    return list_job_statuses(db, user_id=user_id, status=status, limit=limit)


@router.get("/jobs/{job_id}", response_model=JobStatusOut)
def get_job(job_id: str, db: Session = Depends(get_db_session)) -> JobStatusOut:
    try:
        return get_job_status(db, job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc


@router.get("/jobs/{job_id}/events")
async def stream_job_events(job_id: str, db: Session = Depends(get_db_session)) -> EventSourceResponse:
    if not repository.get_job(db, job_id):
        raise HTTPException(status_code=404, detail="Job not found")

    async def event_generator():
        last_id = 0
        while True:
            with SessionLocal() as session:
                events = repository.list_events(session, job_id, after_id=last_id)
                job = repository.get_job(session, job_id)
                terminal = bool(job and repository.is_terminal(job))

            for event in events:
                last_id = event.id
                payload = JobEventOut.model_validate(event, from_attributes=True).model_dump(mode="json")
                yield {
                    "event": "job_event",
                    "id": str(event.id),
                    "data": json.dumps(payload, ensure_ascii=False),
                }

            if terminal and not events:
                yield {"event": "end", "data": json.dumps({"job_id": job_id})}
                break

            await asyncio.sleep(1)

    return EventSourceResponse(event_generator())


@router.get("/files/{object_path:path}")
def download_file(object_path: str) -> FileResponse:
    config = load_config()
    if config.storage.backend != "local":
        raise HTTPException(status_code=404, detail="Local file serving is disabled")

    storage = LocalStorage(PATHS.storage_root, config.storage.public_base_url)
    try:
        path = storage.resolve(object_path)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    media_type = "application/octet-stream"
    if path.suffix == ".mp3":
        media_type = "audio/mpeg"
    elif path.suffix == ".md":
        media_type = "text/markdown"
    elif path.suffix == ".txt":
        media_type = "text/plain"
    elif path.suffix == ".docx":
        media_type = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

    return FileResponse(path=str(path), media_type=media_type, filename=path.name)
