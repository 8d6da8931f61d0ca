"""Background execution of conversion jobs."""

from __future__ import annotations

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

from pydantic import ValidationError
from sqlalchemy.orm import Session

from voxbook.core.constants import (
    SYNTHESIS_PROGRESS_SHARE,
    UPLOAD_PROGRESS,
    VOICE_LABELS,
    JobKind,
    Voice,
)
from voxbook.core.settings import PATHS
from voxbook.db.session import SessionLocal
from voxbook.models.job import Job
from voxbook.schemas.config import AppConfig
from voxbook.schemas.job import (
    BookResult,
    BulkTextToSpeechInput,
    BulkTextToSpeechOutput,
    SpeechToTextInput,
    SpeechToTextOutput,
    TextToSpeechInput,
    TextToSpeechOutput,
)
from voxbook.services import repository
from voxbook.services.config_store import load_config
from voxbook.services.credits import CreditsClient, CreditsError
from voxbook.services.documents import render_document
from voxbook.services.speech import ProviderError, SpeechClient
from voxbook.services.storage import ObjectStorage, StorageError, build_storage, fetch_url
from voxbook.services.text import (
    count_words,
    estimate_duration,
    slugify,
    split_into_chunks,
    structure_into_chapters,
)

logger = logging.getLogger(__name__)

AUDIO_CONTENT_TYPE = "audio/mpeg"
AUDIO_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "video/mp4": "mp4",
}


class PipelineError(RuntimeError):
    pass


@dataclass
class ExecutionContext:
    db: Session
    job_id: str
    config: AppConfig
    speech: SpeechClient
    storage: ObjectStorage
    job_dir: Path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def stale_cutoff(config: AppConfig) -> datetime:
    return _utcnow() - timedelta(minutes=config.pipeline.stale_after_minutes)


def _progress(
    ctx: ExecutionContext,
    *,
    completed_items: Optional[int] = None,
    progress_percent: Optional[int] = None,
    current_step: Optional[str] = None,
) -> None:
    repository.record_progress(
        ctx.db,
        ctx.job_id,
        completed_items=completed_items,
        progress_percent=progress_percent,
        current_step=current_step,
    )
    ctx.db.commit()


def _storage_path(prefix: str, title: str, extension: str) -> str:
    return f"{prefix}/{slugify(title)}-{time.time_ns()}.{extension}"


def _upload(ctx: ExecutionContext, path: str, data: bytes, content_type: str) -> str:
    try:
        ctx.storage.upload(path, data, content_type)
        return ctx.storage.get_public_url(path)
    except StorageError as exc:
        raise PipelineError(f"Upload of {path} failed: {exc}") from exc


def _error_message(exc: BaseException) -> str:
    return str(exc).strip() or exc.__class__.__name__


def resolve_audio(audio_ref: str, config: AppConfig) -> tuple[bytes, str]:
    """Load the bytes behind an audio reference along with a filename hint."""
    max_bytes = config.pipeline.max_upload_mb * 1024 * 1024

    if audio_ref.startswith("data:"):
        header, _, encoded = audio_ref.partition(",")
        mime = header[len("data:") :].split(";", maxsplit=1)[0].strip().lower()
        try:
            audio = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise PipelineError("Inline audio is not valid base64") from exc
        filename = f"audio.{AUDIO_EXTENSIONS.get(mime, 'mp3')}"
    elif audio_ref.startswith("upload://"):
        name = audio_ref[len("upload://") :]
        if not name or Path(name).name != name:
            raise PipelineError(f"Invalid upload reference: {audio_ref}")
        path = PATHS.uploads_root / name
        if not path.exists():
            raise PipelineError(f"Uploaded audio not found: {name}")
        audio = path.read_bytes()
        filename = name
    elif audio_ref.startswith(("http://", "https://")):
        try:
            audio = fetch_url(audio_ref, timeout_s=config.storage.timeout_s, max_bytes=max_bytes)
        except StorageError as exc:
            raise PipelineError(f"Failed to fetch audio: {exc}") from exc
        filename = Path(urlparse(audio_ref).path).name or "audio.mp3"
    else:
        raise PipelineError(f"Unsupported audio reference: {audio_ref[:40]}")

    if not audio:
        raise PipelineError("Audio payload is empty")
    if len(audio) > max_bytes:
        raise PipelineError(f"Audio exceeds {config.pipeline.max_upload_mb} MB limit")
    return audio, filename


def synthesize_text(
    ctx: ExecutionContext,
    text: str,
    voice: Voice,
    *,
    artifact_prefix: str = "",
    on_chunk: Optional[Callable[[int, int], None]] = None,
) -> tuple[bytes, int]:
    """Synthesize ``text`` chunk by chunk and return the concatenated audio.

    Each finished chunk is written to the job directory and recorded as an
    artifact, so a resumed run only synthesizes the chunks still missing.
    Audio is concatenated strictly in chunk order.
    """
    chunks = split_into_chunks(text, ctx.config.pipeline.chunk_max_chars)
    if not chunks:
        raise PipelineError("No text to synthesize")

    job = repository.get_job(ctx.db, ctx.job_id)
    artifacts = repository.get_artifacts(job) if job else {}
    buffers: list[bytes] = []

    for index, chunk in enumerate(chunks, start=1):
        key = f"{artifact_prefix}chunk_{index:04d}"
        existing = artifacts.get(key)
        if existing and Path(existing).exists():
            buffers.append(Path(existing).read_bytes())
            logger.debug("Job %s reusing %s", ctx.job_id, key)
        else:
            try:
                audio = ctx.speech.synthesize(ctx.config.provider, chunk, voice)
            except ProviderError as exc:
                raise PipelineError(f"Chunk {index} failed: {exc}") from exc

            chunk_path = ctx.job_dir / f"{key}.mp3"
            chunk_path.write_bytes(audio)
            repository.put_artifact(ctx.db, ctx.job_id, key, str(chunk_path))
            ctx.db.commit()
            buffers.append(audio)

        if on_chunk:
            on_chunk(index, len(chunks))

    return b"".join(buffers), len(chunks)


def run_text_to_speech(ctx: ExecutionContext, job: Job) -> None:
    payload = TextToSpeechInput.model_validate(repository.get_input(job))
    total_items = job.total_items

    def on_chunk(index: int, chunk_count: int) -> None:
        _progress(
            ctx,
            completed_items=index * total_items // chunk_count,
            progress_percent=round(index / chunk_count * SYNTHESIS_PROGRESS_SHARE),
            current_step=f"Converting chunk {index}/{chunk_count}...",
        )

    _progress(ctx, current_step="Splitting text into chunks")
    audio, chunk_count = synthesize_text(ctx, payload.text, payload.voice, on_chunk=on_chunk)

    _progress(ctx, progress_percent=UPLOAD_PROGRESS, current_step="Uploading audio...")
    storage_path = _storage_path("audiobooks", payload.title, "mp3")
    download_url = _upload(ctx, storage_path, audio, AUDIO_CONTENT_TYPE)

    output = TextToSpeechOutput(
        title=payload.title,
        voice=VOICE_LABELS.get(payload.voice, payload.voice.value),
        estimated_duration=estimate_duration(payload.text, ctx.config.pipeline.words_per_minute),
        download_url=download_url,
        storage_path=storage_path,
        chunk_count=chunk_count,
        file_size_bytes=len(audio),
    )
    repository.complete_job(ctx.db, ctx.job_id, output.model_dump(mode="json"))
    ctx.db.commit()


def run_speech_to_text(ctx: ExecutionContext, job: Job) -> None:
    payload = SpeechToTextInput.model_validate(repository.get_input(job))
    transcript_path = ctx.job_dir / "transcript.txt"
    saved_transcript = repository.get_artifacts(job).get("transcript")

    if saved_transcript and Path(saved_transcript).exists():
        text = Path(saved_transcript).read_text(encoding="utf-8")
        _progress(ctx, completed_items=1, progress_percent=70, current_step="Reusing saved transcript")
    else:
        _progress(ctx, progress_percent=10, current_step="Fetching audio...")
        audio, filename = resolve_audio(payload.audio_ref, ctx.config)

        _progress(ctx, progress_percent=30, current_step="Transcribing...")
        try:
            transcription = ctx.speech.transcribe(ctx.config.provider, audio, filename)
        except ProviderError as exc:
            raise PipelineError(f"Transcription failed: {exc}") from exc

        text = transcription.text.strip()
        if not text:
            raise PipelineError("Transcription returned no text")
        transcript_path.write_text(text, encoding="utf-8")
        repository.put_artifact(ctx.db, ctx.job_id, "transcript", str(transcript_path))
        _progress(ctx, completed_items=1, progress_percent=70, current_step="Structuring chapters...")

    chapters = structure_into_chapters(text, ctx.config.pipeline.words_per_chapter)
    document = render_document(payload.title, chapters, payload.output_format)

    _progress(ctx, progress_percent=UPLOAD_PROGRESS, current_step="Uploading document...")
    storage_path = _storage_path("ebooks/transcribed", payload.title, document.extension)
    download_url = _upload(ctx, storage_path, document.data, document.content_type)

    output = SpeechToTextOutput(
        title=payload.title,
        format=document.extension,
        chapter_count=len(chapters),
        word_count=count_words(text),
        download_url=download_url,
        storage_path=storage_path,
    )
    repository.complete_job(ctx.db, ctx.job_id, output.model_dump(mode="json"))
    ctx.db.commit()


def run_bulk_text_to_speech(ctx: ExecutionContext, job: Job) -> None:
    payload = BulkTextToSpeechInput.model_validate(repository.get_input(job))
    total = len(payload.books)
    saved = repository.get_meta(job).get("book_results") or []
    results = [BookResult.model_validate(row) for row in saved][:total]

    for index, book in enumerate(payload.books, start=1):
        if index <= len(results):
            continue

        def on_chunk(chunk_index: int, chunk_count: int, index: int = index, book_title: str = book.title) -> None:
            _progress(ctx, current_step=f"Book {index}/{total} ({book_title}): chunk {chunk_index}/{chunk_count}")

        try:
            audio, chunk_count = synthesize_text(
                ctx,
                book.text,
                payload.voice,
                artifact_prefix=f"book_{index:03d}_",
                on_chunk=on_chunk,
            )
            storage_path = _storage_path("audiobooks", book.title, "mp3")
            download_url = _upload(ctx, storage_path, audio, AUDIO_CONTENT_TYPE)
            result = BookResult(
                title=book.title,
                status="completed",
                download_url=download_url,
                estimated_duration=estimate_duration(book.text, ctx.config.pipeline.words_per_minute),
                chunk_count=chunk_count,
            )
        except (PipelineError, OSError) as exc:
            logger.warning("Job %s book %d (%s) failed: %s", ctx.job_id, index, book.title, exc)
            result = BookResult(title=book.title, status="failed", error=_error_message(exc))

        results.append(result)
        repository.patch_meta(ctx.db, ctx.job_id, book_results=[row.model_dump(mode="json") for row in results])
        _progress(
            ctx,
            completed_items=index,
            progress_percent=round(index / total * UPLOAD_PROGRESS),
            current_step=f"Finished book {index}/{total}: {book.title} ({result.status})",
        )

    failures = [row for row in results if row.status == "failed"]
    if len(failures) == len(results):
        details = "; ".join(f"{row.title}: {row.error}" for row in failures)
        raise PipelineError(f"All {total} books failed. {details}")

    output = BulkTextToSpeechOutput(
        results=results,
        success_count=len(results) - len(failures),
        failure_count=len(failures),
    )
    repository.complete_job(ctx.db, ctx.job_id, output.model_dump(mode="json"))
    ctx.db.commit()


EXECUTORS: dict[JobKind, Callable[[ExecutionContext, Job], None]] = {
    JobKind.TEXT_TO_SPEECH: run_text_to_speech,
    JobKind.SPEECH_TO_TEXT: run_speech_to_text,
    JobKind.BULK_TEXT_TO_SPEECH: run_bulk_text_to_speech,
}


def refund_job(
    db: Session,
    job: Job,
    *,
    config: AppConfig,
    credits: Optional[CreditsClient] = None,
) -> bool:
    """Return the credits charged for a failed job. Safe to call repeatedly."""
    if job.credits_charged <= 0 or not job.user_id:
        return False
    if not repository.claim_refund(db, job.id):
        return False
    db.commit()

    client = credits or CreditsClient()
    try:
        client.refund(config.credits, job.user_id, job.credits_charged, f"Refund for failed job {job.id}")
    except CreditsError as exc:
        logger.error("Refund for job %s failed, will retry: %s", job.id, exc)
        repository.release_refund(db, job.id, _error_message(exc))
        db.commit()
        return False

    repository.append_event(db, job.id, job.status, f"Refunded {job.credits_charged} credits", job.progress_percent)
    db.commit()
    return True


def fail_and_refund(
    db: Session,
    job_id: str,
    error_message: str,
    *,
    config: AppConfig,
    credits: Optional[CreditsClient] = None,
) -> None:
    try:
        job = repository.fail_job(db, job_id, error_message)
        db.commit()
    except Exception:  # noqa: BLE001
        db.rollback()
        logger.exception("Could not record failure for job %s", job_id)
        return
    if job is not None:
        refund_job(db, job, config=config, credits=credits)


def retry_pending_refunds(db: Session, *, config: AppConfig, credits: Optional[CreditsClient] = None) -> int:
    refunded = 0
    for job in repository.list_unrefunded_failures(db):
        if refund_job(db, job, config=config, credits=credits):
            refunded += 1
    return refunded


def execute_job(
    job_id: str,
    *,
    resume: bool = False,
    speech: Optional[SpeechClient] = None,
    storage: Optional[ObjectStorage] = None,
    credits: Optional[CreditsClient] = None,
    config: Optional[AppConfig] = None,
) -> None:
    """Run one job to a terminal state.

    Failures never escape: they are recorded on the job, and any credits
    charged for it are refunded.
    """
    db = SessionLocal()
    config = config or load_config()
    claimed = False

    try:
        job = repository.claim_job(db, job_id, stale_before=stale_cutoff(config) if resume else None)
        db.commit()
        if not job:
            logger.info("Job %s is not claimable, skipping", job_id)
            return
        claimed = True

        try:
            kind = JobKind(job.kind)
        except ValueError:
            raise PipelineError(f"Unknown job kind: {job.kind}") from None

        job_dir = PATHS.jobs_root / job.id
        job_dir.mkdir(parents=True, exist_ok=True)
        ctx = ExecutionContext(
            db=db,
            job_id=job.id,
            config=config,
            speech=speech or SpeechClient(),
            storage=storage or build_storage(config.storage),
            job_dir=job_dir,
        )
        logger.info("Job %s (%s) started", job_id, kind.value)
        EXECUTORS[kind](ctx, job)
        logger.info("Job %s completed", job_id)

    except ValidationError as exc:
        db.rollback()
        logger.warning("Job %s has invalid stored input: %s", job_id, exc)
        if claimed:
            fail_and_refund(db, job_id, f"Invalid job input: {exc.error_count()} error(s)", config=config, credits=credits)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        logger.exception("Job %s failed", job_id)
        if claimed:
            fail_and_refund(db, job_id, _error_message(exc), config=config, credits=credits)
    finally:
        db.close()
