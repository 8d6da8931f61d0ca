"""Pydantic schemas for persisted app configuration."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    base_url: str = "https://api.openai.com"
    api_key: str = ""
    tts_model: str = "tts-1"
    transcription_model: str = "whisper-1"
    timeout_s: int = 120


class StorageConfig(BaseModel):
    backend: Literal["local", "supabase"] = "local"
    bucket: str = "assets"
    supabase_url: str = ""
    service_key: str = ""
    public_base_url: str = "http://localhost:8000/api/files"
    timeout_s: int = 120


class CreditsConfig(BaseModel):
    enabled: bool = False
    base_url: str = "https://craudiovizai.com/api"
    app_id: str = "voxbook"
    text_to_speech_cost: int = 100
    speech_to_text_cost: int = 75
    bulk_cost_per_book: int = 100
    exempt_roles: list[str] = Field(default_factory=lambda: ["admin"])
    timeout_s: int = 30


class PipelineConfig(BaseModel):
    chunk_max_chars: int = Field(default=4000, ge=1)
    words_per_chapter: int = Field(default=1500, ge=1)
    words_per_minute: int = Field(default=150, ge=1)
    max_upload_mb: int = 25
    stale_after_minutes: int = Field(default=15, ge=1)
    default_list_limit: int = 20


class AppConfig(BaseModel):
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    credits: CreditsConfig = Field(default_factory=CreditsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
