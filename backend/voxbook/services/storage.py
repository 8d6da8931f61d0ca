"""Object storage backends for generated assets."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import httpx

from voxbook.core.settings import PATHS
from voxbook.schemas.config import StorageConfig

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class ObjectStorage(Protocol):
    def upload(self, path: str, data: bytes, content_type: str) -> None: ...

    def get_public_url(self, path: str) -> str: ...


def normalize_object_path(path: str) -> str:
    parts = [part for part in path.replace("\\", "/").split("/") if part]
    if not parts or any(part in {".", ".."} for part in parts):
        raise StorageError(f"Invalid object path: {path!r}")
    return "/".join(parts)


class LocalStorage:
    """Stores objects on disk and serves them through the files route."""

    def __init__(self, root: Path, public_base_url: str) -> None:
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")

    def resolve(self, path: str) -> Path:
        return self.root / normalize_object_path(path)

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Upload failed for {path}: {exc}") from exc
        logger.info("Stored %s (%s, %d bytes)", path, content_type, len(data))

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{normalize_object_path(path)}"


class SupabaseStorage:
    def __init__(self, cfg: StorageConfig) -> None:
        if not cfg.supabase_url or not cfg.service_key:
            raise StorageError("supabase_url and service_key are required for the supabase backend")
        self.cfg = cfg
        self.base_url = cfg.supabase_url.rstrip("/")

    def _headers(self, content_type: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.cfg.service_key}",
            "apikey": self.cfg.service_key,
            "Content-Type": content_type,
            "x-upsert": "true",
        }

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        object_path = normalize_object_path(path)
        url = f"{self.base_url}/storage/v1/object/{self.cfg.bucket}/{object_path}"
        try:
            with httpx.Client(timeout=self.cfg.timeout_s) as client:
                resp = client.post(url, headers=self._headers(content_type), content=data)
        except httpx.HTTPError as exc:
            raise StorageError(f"Upload failed for {object_path}: {exc}") from exc
        if resp.status_code >= 400:
            raise StorageError(f"Upload failed for {object_path}: {resp.status_code} {resp.text[:500]}")
        logger.info("Uploaded %s to bucket %s (%d bytes)", object_path, self.cfg.bucket, len(data))

    def get_public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.cfg.bucket}/{normalize_object_path(path)}"


def build_storage(cfg: StorageConfig) -> ObjectStorage:
    if cfg.backend == "supabase":
        return SupabaseStorage(cfg)
    return LocalStorage(PATHS.storage_root, cfg.public_base_url)


def fetch_url(url: str, *, timeout_s: int = 180, max_bytes: int = 0) -> bytes:
    buffer = bytearray()
    try:
        with httpx.stream("GET", url, timeout=timeout_s, follow_redirects=True) as resp:
            if resp.status_code >= 400:
                raise StorageError(f"Fetching {url} failed: {resp.status_code}")
            for chunk in resp.iter_bytes():
                buffer.extend(chunk)
                if max_bytes and len(buffer) > max_bytes:
                    raise StorageError(f"Remote file exceeds {max_bytes} bytes: {url}")
    except httpx.HTTPError as exc:
        raise StorageError(f"Fetching {url} failed: {exc}") from exc
    return bytes(buffer)
