"""Pydantic schemas for job inputs, outputs and API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from voxbook.core.constants import OutputFormat, Voice

AUDIO_REF_PREFIXES = ("data:", "http://", "https://", "upload://")


def _require_text(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must be a non-empty string")
    return value


class TextToSpeechInput(BaseModel):
    text: str
    title: str = "Untitled"
    voice: Voice = Voice.NOVA

    @field_validator("text")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("title")
    @classmethod
    def default_title(cls, value: str) -> str:
        return value.strip() or "Untitled"


class SpeechToTextInput(BaseModel):
    audio_ref: str
    title: str = "Transcribed Book"
    output_format: OutputFormat = OutputFormat.TXT

    @field_validator("audio_ref")
    @classmethod
    def check_audio_ref(cls, value: str) -> str:
        value = _require_text(value).strip()
        if not value.startswith(AUDIO_REF_PREFIXES):
            raise ValueError(f"must start with one of: {', '.join(AUDIO_REF_PREFIXES)}")
        return value

    @field_validator("title")
    @classmethod
    def default_title(cls, value: str) -> str:
        return value.strip() or "Transcribed Book"


class BulkBook(BaseModel):
    title: str
    text: str

    @field_validator("text")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("title")
    @classmethod
    def default_title(cls, value: str) -> str:
        return value.strip() or "Untitled"


class BulkTextToSpeechInput(BaseModel):
    books: list[BulkBook] = Field(min_length=1)
    voice: Voice = Voice.NOVA


class JobCreateRequest(BaseModel):
    kind: str
    input: dict[str, Any]
    user_id: Optional[str] = None


class JobCreateResponse(BaseModel):
    job_id: str
    kind: str
    status: str
    total_items: int
    estimated_duration: str
    credits_charged: int = 0
    message: str = "Job created. Processing will begin shortly."


class TextToSpeechOutput(BaseModel):
    title: str
    voice: str
    estimated_duration: str
    download_url: str
    storage_path: str
    chunk_count: int
    file_size_bytes: int


class SpeechToTextOutput(BaseModel):
    title: str
    format: str
    chapter_count: int
    word_count: int
    download_url: str
    storage_path: str


class BookResult(BaseModel):
    title: str
    status: Literal["completed", "failed"]
    download_url: Optional[str] = None
    estimated_duration: Optional[str] = None
    chunk_count: Optional[int] = None
    error: Optional[str] = None


class BulkTextToSpeechOutput(BaseModel):
    results: list[BookResult]
    success_count: int
    failure_count: int


class JobStatusOut(BaseModel):
    id: str
    kind: str
    status: str
    user_id: Optional[str]
    progress_percent: int
    current_step: str
    total_items: int
    completed_items: int
    estimated_duration: str
    output: Optional[dict[str, Any]]
    error_message: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]


class JobEventOut(BaseModel):
    id: int
    job_id: str
    status: str
    message: str
    progress_percent: int
    created_at: datetime
