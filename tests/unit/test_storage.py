from __future__ import annotations

import httpx
import pytest

from voxbook.schemas.config import StorageConfig
from voxbook.services import storage
from voxbook.services.storage import (
    LocalStorage,
    StorageError,
    SupabaseStorage,
    build_storage,
    normalize_object_path,
)


def test_normalize_object_path() -> None:
    assert normalize_object_path("/audiobooks//a.mp3") == "audiobooks/a.mp3"
    for bad in ("", "/", "../secret", "a/./b"):
        with pytest.raises(StorageError):
            normalize_object_path(bad)


def test_local_storage_writes_and_builds_url(tmp_path) -> None:
    backend = LocalStorage(tmp_path, "http://localhost:8000/api/files/")
    backend.upload("audiobooks/book.mp3", b"audio", "audio/mpeg")

    assert (tmp_path / "audiobooks" / "book.mp3").read_bytes() == b"audio"
    assert backend.get_public_url("audiobooks/book.mp3") == "http://localhost:8000/api/files/audiobooks/book.mp3"


def test_build_storage_selects_backend() -> None:
    assert isinstance(build_storage(StorageConfig()), LocalStorage)
    with pytest.raises(StorageError):
        build_storage(StorageConfig(backend="supabase"))


def test_supabase_upload(monkeypatch) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": "assets/audiobooks/a.mp3"})

    real_client = httpx.Client
    monkeypatch.setattr(
        storage.httpx,
        "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    cfg = StorageConfig(backend="supabase", supabase_url="https://proj.supabase.co/", service_key="key")
    backend = SupabaseStorage(cfg)
    backend.upload("audiobooks/a.mp3", b"audio", "audio/mpeg")

    assert str(seen[0].url) == "https://proj.supabase.co/storage/v1/object/assets/audiobooks/a.mp3"
    assert seen[0].headers["x-upsert"] == "true"
    assert seen[0].headers["Content-Type"] == "audio/mpeg"
    assert backend.get_public_url("audiobooks/a.mp3") == (
        "https://proj.supabase.co/storage/v1/object/public/assets/audiobooks/a.mp3"
    )
