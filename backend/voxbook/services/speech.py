"""HTTP client for the speech synthesis and transcription provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union

import httpx

from voxbook.core.constants import Voice
from voxbook.schemas.config import ProviderConfig

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    pass


@dataclass
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass
class Transcription:
    text: str
    segments: list[TranscriptSegment] = field(default_factory=list)


def _safe_float(value: object, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_transcription(payload: Union[dict[str, Any], str]) -> Transcription:
    if isinstance(payload, str):
        return Transcription(text=payload.strip())

    segments: list[TranscriptSegment] = []
    raw_segments = payload.get("segments")
    if isinstance(raw_segments, list):
        for row in raw_segments:
            if not isinstance(row, dict):
                continue
            text = row.get("text")
            if isinstance(text, str) and text.strip():
                segments.append(
                    TranscriptSegment(
                        start=_safe_float(row.get("start")),
                        end=_safe_float(row.get("end")),
                        text=text.strip(),
                    )
                )

    text = payload.get("text")
    if isinstance(text, str) and text.strip():
        return Transcription(text=text.strip(), segments=segments)
    if segments:
        return Transcription(text=" ".join(seg.text for seg in segments), segments=segments)
    return Transcription(text="", segments=segments)


class SpeechClient:
    @staticmethod
    def _headers(cfg: ProviderConfig) -> dict[str, str]:
        return {"Authorization": f"Bearer {cfg.api_key}"}

    @staticmethod
    def _require_key(cfg: ProviderConfig) -> None:
        if not cfg.api_key:
            raise ProviderError("speech provider api_key is required")

    def synthesize(self, cfg: ProviderConfig, text: str, voice: Union[Voice, str]) -> bytes:
        self._require_key(cfg)
        url = f"{cfg.base_url.rstrip('/')}/v1/audio/speech"
        payload = {
            "model": cfg.tts_model,
            "voice": voice.value if isinstance(voice, Voice) else voice,
            "input": text,
            "response_format": "mp3",
        }

        try:
            with httpx.Client(timeout=cfg.timeout_s) as client:
                resp = client.post(url, headers=self._headers(cfg), json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Speech request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise ProviderError(f"Speech synthesis failed: {resp.status_code} {resp.text[:500]}")
        if not resp.content:
            raise ProviderError("Speech synthesis returned empty audio")

        logger.debug("Synthesized %d chars into %d bytes", len(text), len(resp.content))
        return resp.content

    def transcribe(self, cfg: ProviderConfig, audio: bytes, filename: str = "audio.mp3") -> Transcription:
        self._require_key(cfg)
        if not audio:
            raise ProviderError("Cannot transcribe empty audio")

        url = f"{cfg.base_url.rstrip('/')}/v1/audio/transcriptions"
        data = {
            "model": cfg.transcription_model,
            "response_format": "verbose_json",
            "timestamp_granularities[]": "segment",
        }
        files = {"file": (filename, audio, "audio/mpeg")}

        try:
            with httpx.Client(timeout=cfg.timeout_s) as client:
                resp = client.post(url, headers=self._headers(cfg), data=data, files=files)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Transcription request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise ProviderError(f"Transcription failed: {resp.status_code} {resp.text[:500]}")

        try:
            payload = resp.json()
        except ValueError:
            payload = resp.text
        return parse_transcription(payload)
