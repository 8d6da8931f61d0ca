"""Project-wide constants and state definitions."""

from __future__ import annotations

from enum import Enum


class JobKind(str, Enum):
    TEXT_TO_SPEECH = "text_to_speech"
    SPEECH_TO_TEXT = "speech_to_text"
    BULK_TEXT_TO_SPEECH = "bulk_text_to_speech"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = {JobStatus.COMPLETED, JobStatus.FAILED}


class Voice(str, Enum):
    ALLOY = "alloy"
    ECHO = "echo"
    FABLE = "fable"
    ONYX = "onyx"
    NOVA = "nova"
    SHIMMER = "shimmer"


VOICE_LABELS = {
    Voice.ALLOY: "Alloy - Neutral",
    Voice.ECHO: "Echo - Male",
    Voice.FABLE: "Fable - British",
    Voice.ONYX: "Onyx - Deep Male",
    Voice.NOVA: "Nova - Female",
    Voice.SHIMMER: "Shimmer - Soft Female",
}


class OutputFormat(str, Enum):
    TXT = "txt"
    MD = "md"
    DOCX = "docx"


# Progress share of the synthesis loop; the rest covers assembly and upload.
SYNTHESIS_PROGRESS_SHARE = 90
UPLOAD_PROGRESS = 95
SECONDS_PER_CHUNK_ESTIMATE = 15
