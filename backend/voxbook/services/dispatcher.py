"""Validate job requests, create job records and hand them to the queue."""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from voxbook.core.constants import SECONDS_PER_CHUNK_ESTIMATE, JobKind, JobStatus
from voxbook.schemas.config import AppConfig
from voxbook.schemas.job import (
    BulkTextToSpeechInput,
    JobCreateRequest,
    JobCreateResponse,
    SpeechToTextInput,
    TextToSpeechInput,
)
from voxbook.services import repository
from voxbook.services.config_store import load_config
from voxbook.services.credits import CreditsClient, CreditsError, InsufficientCredits, job_cost
from voxbook.services.status import JobNotFound
from voxbook.workers.queue import enqueue_job

logger = logging.getLogger(__name__)

INPUT_MODELS: dict[JobKind, type[BaseModel]] = {
    JobKind.TEXT_TO_SPEECH: TextToSpeechInput,
    JobKind.SPEECH_TO_TEXT: SpeechToTextInput,
    JobKind.BULK_TEXT_TO_SPEECH: BulkTextToSpeechInput,
}


class InvalidJobInput(ValueError):
    pass


@dataclass
class JobPlan:
    kind: JobKind
    input_payload: dict[str, Any]
    total_items: int
    estimated_duration: str
    description: str


def parse_kind(value: object) -> JobKind:
    raw = str(value or "").strip().lower()
    for kind in JobKind:
        if kind.value == raw:
            return kind
    allowed = ", ".join(kind.value for kind in JobKind)
    raise InvalidJobInput(f"Unknown job kind: {value!r}. Allowed: {allowed}")


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "input"
        problems.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(problems)


def plan_job(request: JobCreateRequest, config: AppConfig) -> JobPlan:
    kind = parse_kind(request.kind)
    try:
        parsed = INPUT_MODELS[kind].model_validate(request.input)
    except ValidationError as exc:
        raise InvalidJobInput(f"Invalid input for {kind.value}: {_describe_validation_error(exc)}") from exc

    if isinstance(parsed, TextToSpeechInput):
        total_items = max(1, math.ceil(len(parsed.text) / config.pipeline.chunk_max_chars))
        minutes = math.ceil(total_items * SECONDS_PER_CHUNK_ESTIMATE / 60)
        estimate = f"{minutes}-{minutes + 2} minutes"
        description = f"Text to speech: {parsed.title}"
    elif isinstance(parsed, BulkTextToSpeechInput):
        total_items = len(parsed.books)
        estimate = f"{total_items * 2}-{total_items * 3} minutes"
        description = f"Bulk text to speech: {total_items} books"
    else:
        total_items = 1
        estimate = "1-2 minutes"
        description = f"Speech to text: {parsed.title}"

    return JobPlan(
        kind=kind,
        input_payload=parsed.model_dump(mode="json"),
        total_items=total_items,
        estimated_duration=estimate,
        description=description,
    )


def charge_for_job(
    config: AppConfig,
    plan: JobPlan,
    user_id: Optional[str],
    credits: CreditsClient,
) -> int:
    """Deduct credits for a planned job and return the amount charged."""
    if not user_id or not config.credits.enabled:
        return 0
    cost = job_cost(config.credits, plan.kind, plan.total_items)
    if cost <= 0:
        return 0

    balance = credits.get_balance(config.credits, user_id)
    if balance.role and balance.role in config.credits.exempt_roles:
        logger.info("User %s has exempt role %s, skipping charge", user_id, balance.role)
        return 0
    if balance.balance < cost:
        raise InsufficientCredits(cost, balance.balance)

    credits.deduct(config.credits, user_id, cost, plan.description)
    return cost


def submit_job(
    db: Session,
    request: JobCreateRequest,
    *,
    config: Optional[AppConfig] = None,
    credits: Optional[CreditsClient] = None,
    enqueue: Optional[Callable[[str], object]] = None,
) -> JobCreateResponse:
    config = config or load_config()
    credits = credits or CreditsClient()
    plan = plan_job(request, config)
    charged = charge_for_job(config, plan, request.user_id, credits)

    job_id = uuid.uuid4().hex
    try:
        repository.create_job(
            db,
            job_id=job_id,
            kind=plan.kind,
            input_payload=plan.input_payload,
            total_items=plan.total_items,
            estimated_duration=plan.estimated_duration,
            user_id=request.user_id,
            credits_charged=charged,
        )
        db.commit()
    except Exception:
        db.rollback()
        if charged and request.user_id:
            try:
                credits.refund(config.credits, request.user_id, charged, f"Job creation failed: {plan.description}")
            except CreditsError:
                logger.exception(
                    "Could not refund %d credits to user %s after job creation failed",
                    charged,
                    request.user_id,
                )
        raise

    logger.info("Created %s job %s with %d items", plan.kind.value, job_id, plan.total_items)
    dispatch_job(db, job_id, enqueue=enqueue)

    return JobCreateResponse(
        job_id=job_id,
        kind=plan.kind.value,
        status=JobStatus.QUEUED.value,
        total_items=plan.total_items,
        estimated_duration=plan.estimated_duration,
        credits_charged=charged,
    )


def dispatch_job(db: Session, job_id: str, *, enqueue: Optional[Callable[[str], object]] = None) -> bool:
    """Queue a job for execution. Returns ``False`` if it is no longer queued."""
    job = repository.get_job(db, job_id)
    if not job:
        raise JobNotFound(job_id)
    if job.status != JobStatus.QUEUED.value:
        logger.info("Job %s is %s, not dispatching again", job_id, job.status)
        return False

    (enqueue or enqueue_job)(job_id)
    return True
